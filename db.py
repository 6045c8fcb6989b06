# db.py
from __future__ import annotations

from pymongo import MongoClient

from config import MONGO_DB_NAME, MONGO_URI

# MongoClient connects lazily; importing this module never touches the network.
client = MongoClient(MONGO_URI, tz_aware=True, serverSelectionTimeoutMS=10000)
db = client[MONGO_DB_NAME]
