import os

# Keep the cache database in memory for every test session
os.environ.setdefault("CACHE_DATABASE_URL", "sqlite://")
os.environ.setdefault("PLACE_INTEL_ENDPOINT", "")
