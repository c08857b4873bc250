'''
Root directory paths and constants
'''

from pathlib import Path

# Paths
ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "data"
DEFAULT_CSV_NAME = "languoid.csv"

# Geo
EARTH_RADIUS_M = 6371000.0

# Query bounds
MAX_NEIGHBORS = 50
DEFAULT_NEIGHBORS = 1

# Index
DEFAULT_LEAF_SIZE = 64

# CSV columns
LATITUDE_COLUMN = "latitude"
LONGITUDE_COLUMN = "longitude"
ID_COLUMN = "id"
NAME_COLUMN = "name"
LEVEL_COLUMN = "level"
AUXILIARY_CODE_COLUMN = "iso639P3code"
REGION_IDS_COLUMN = "country_ids"

# Rows per pandas chunk while streaming the CSV
DEFAULT_CHUNK_SIZE = 5000
