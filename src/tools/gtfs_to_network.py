#!/usr/bin/env python3
"""
GTFS to Network Converter
=========================
Builds a rail network data file (the line registration format loaded by
NetworkModel.load_lines) from a static GTFS ZIP file.

Each GTFS shape becomes one rail line:
- id: shape_id
- name: route long name (routes.txt) or short name, else route_id
- geometry: shape points ordered by shape_pt_sequence, consecutive
  duplicates and out-of-range points removed
- pkStart / pkEnd: 0 .. great-circle length of the shape in km
- direction: most common trip_headsign among the shape's trips

Input: GTFS ZIP with shapes.txt and trips.txt (routes.txt optional).
Output: JSON ``{"lines": [...]}``.
"""

import argparse
import json
import sys
import zipfile
from collections import Counter
from io import TextIOWrapper
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from tqdm import tqdm

from src.core.geo import GeoPoint
from src.engine.network import DEFAULT_DIRECTION, RailLine


class GTFSNetworkConverter:
    """
    Converts GTFS static data to the network registration format.

    Steps:
    1. Load shapes.txt, trips.txt and routes.txt from the ZIP file
    2. Associate each shape with its dominant route and headsign
    3. Order and clean shape points
    4. Build RailLine records and write them as JSON
    """

    def __init__(self, input_path: Path, output_path: Path):
        """
        Initialize the converter.

        Args:
            input_path: Path to input GTFS ZIP file
            output_path: Path to output network JSON file
        """
        self.input_path = input_path
        self.output_path = output_path
        self.shapes_df: Optional[pd.DataFrame] = None
        self.trips_df: Optional[pd.DataFrame] = None
        self.routes_df: Optional[pd.DataFrame] = None

    @staticmethod
    def _read_csv(zip_ref: zipfile.ZipFile, name: str, **kwargs: Any) -> pd.DataFrame:
        with zip_ref.open(name) as raw:
            return pd.read_csv(TextIOWrapper(raw, encoding='utf-8-sig'), **kwargs)

    def load_gtfs_data(self) -> None:
        """
        Load the GTFS tables needed to build lines.

        Raises:
            FileNotFoundError: If input ZIP file doesn't exist
            KeyError: If shapes.txt or trips.txt is missing from the ZIP
            ValueError: If the file is not a ZIP archive
        """
        if not self.input_path.exists():
            raise FileNotFoundError(f"Input file not found: {self.input_path}")

        print(f"📦 Loading GTFS data from {self.input_path}...")

        try:
            with zipfile.ZipFile(self.input_path, 'r') as zip_ref:
                names = zip_ref.namelist()
                for required in ('shapes.txt', 'trips.txt'):
                    if required not in names:
                        raise KeyError(f"{required} not found in GTFS ZIP file")

                self.shapes_df = self._read_csv(
                    zip_ref, 'shapes.txt',
                    usecols=['shape_id', 'shape_pt_lat', 'shape_pt_lon', 'shape_pt_sequence'],
                    dtype={
                        'shape_id': str,
                        'shape_pt_lat': float,
                        'shape_pt_lon': float,
                        'shape_pt_sequence': int
                    }
                )
                print(f"  ✓ Loaded {len(self.shapes_df):,} shape points")

                trips = self._read_csv(zip_ref, 'trips.txt', dtype=str)
                if 'trip_headsign' not in trips.columns:
                    trips['trip_headsign'] = None
                self.trips_df = trips[['route_id', 'shape_id', 'trip_headsign']].dropna(
                    subset=['shape_id']
                )
                print(f"  ✓ Loaded {len(self.trips_df):,} trips with shapes")

                if 'routes.txt' in names:
                    self.routes_df = self._read_csv(zip_ref, 'routes.txt', dtype=str)

        except zipfile.BadZipFile:
            raise ValueError(f"Invalid ZIP file: {self.input_path}")

    def route_names(self) -> Dict[str, str]:
        """route_id -> display name (long name, short name, else the id)."""
        if self.routes_df is None:
            return {}

        names: Dict[str, str] = {}
        for row in self.routes_df.to_dict('records'):
            route_id = row.get('route_id')
            if not isinstance(route_id, str):
                continue
            for column in ('route_long_name', 'route_short_name'):
                value = row.get(column)
                if isinstance(value, str) and value.strip():
                    names[route_id] = value.strip()
                    break
        return names

    def associate_shapes(self) -> Dict[str, Dict[str, Optional[str]]]:
        """
        Pick the dominant route and headsign of every shape.

        A shape shared by several routes is attached to the route using it
        most often; the direction label is the most frequent headsign.

        Returns:
            shape_id -> {"route_id", "headsign"}
        """
        print("🔗 Associating shapes to routes...")

        associations: Dict[str, Dict[str, Optional[str]]] = {}
        for shape_id, trips in tqdm(self.trips_df.groupby('shape_id'), desc="Associating shapes"):
            route_id = Counter(trips['route_id'].dropna()).most_common(1)
            headsign = Counter(trips['trip_headsign'].dropna()).most_common(1)
            associations[shape_id] = {
                'route_id': route_id[0][0] if route_id else None,
                'headsign': headsign[0][0] if headsign else None,
            }

        print(f"  ✓ Mapped {len(associations):,} unique shapes")
        return associations

    @staticmethod
    def clean_and_order_points(shape_points: pd.DataFrame) -> List[List[float]]:
        """
        Sort by shape_pt_sequence and drop invalid or repeated points.

        Returns:
            List of [longitude, latitude] pairs
        """
        ordered = shape_points.sort_values('shape_pt_sequence')
        points = ordered[['shape_pt_lon', 'shape_pt_lat']].values.tolist()

        cleaned: List[List[float]] = []
        for lon, lat in points:
            if not (-180 <= lon <= 180 and -90 <= lat <= 90):
                continue
            if not cleaned or cleaned[-1] != [lon, lat]:
                cleaned.append([lon, lat])
        return cleaned

    def generate_lines(self) -> List[Dict[str, Any]]:
        """
        Build line registration records from the loaded tables.

        Shapes without trips or with fewer than two valid points are skipped.
        """
        print("🌐 Generating network lines...")

        associations = self.associate_shapes()
        names = self.route_names()
        lines: List[Dict[str, Any]] = []

        for shape_id, shape_points in tqdm(self.shapes_df.groupby('shape_id'), desc="Building lines"):
            association = associations.get(shape_id)
            if association is None:
                continue

            points = self.clean_and_order_points(shape_points)
            if len(points) < 2:
                continue

            vertices = tuple(GeoPoint.from_lonlat(p) for p in points)
            # Lengths are computed by RailLine itself; start with a provisional range
            provisional = RailLine(
                id=shape_id,
                name=shape_id,
                vertices=vertices,
                pk_start=0.0,
                pk_end=1.0
            )
            length_km = round(provisional.geometry_length_meters / 1000.0, 3)
            if length_km <= 0:
                continue

            route_id = association['route_id']
            line = RailLine(
                id=shape_id,
                name=names.get(route_id, route_id or shape_id),
                vertices=vertices,
                pk_start=0.0,
                pk_end=length_km,
                direction=association['headsign'] or DEFAULT_DIRECTION
            )
            lines.append(line.to_dict())

        print(f"  ✓ Generated {len(lines):,} lines")
        return lines

    def write_output(self, lines: List[Dict[str, Any]]) -> None:
        """Write the network file."""
        print(f"💾 Writing output to {self.output_path}...")
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.output_path, 'w', encoding='utf-8') as f:
            json.dump({'lines': lines}, f, ensure_ascii=False, separators=(',', ':'))

        print(f"  ✓ Wrote {self.output_path.stat().st_size / 1024:.1f} KB")

    def convert(self) -> int:
        """
        Run the full conversion.

        Returns:
            Process exit code (0 on success).
        """
        try:
            self.load_gtfs_data()
            lines = self.generate_lines()
            if not lines:
                print("⚠️  Warning: No valid lines generated")
                return 1
            self.write_output(lines)
        except (FileNotFoundError, KeyError, ValueError) as e:
            print(f"❌ Error during conversion: {e}", file=sys.stderr)
            return 1

        print("✅ Conversion completed successfully!")
        return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Convert a GTFS static ZIP into a rail network file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --input gtfs.zip --output data/network.json

Output Format:
  {"lines": [{"id": "SHAPE_1", "name": "...", "geometry": [[lon, lat], ...],
              "pkStart": 0.0, "pkEnd": 12.345, "direction": "..."}]}
        """
    )
    parser.add_argument('--input', type=Path, required=True, help='Path to input GTFS ZIP file')
    parser.add_argument('--output', type=Path, required=True, help='Path to output network JSON file')

    args = parser.parse_args()
    sys.exit(GTFSNetworkConverter(input_path=args.input, output_path=args.output).convert())


if __name__ == '__main__':
    main()
