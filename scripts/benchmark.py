# scripts/benchmark.py
import time
from fastapi.testclient import TestClient
from podsearch.main import app

params = {"q": "astronaut stranded on mars"}

def main():
    with TestClient(app) as client:
        t0 = time.time()
        r1 = client.get("/api/search", params=params).json()
        uncached = (time.time() - t0) * 1000

        t1 = time.time()
        r2 = client.get("/api/search", params=params).json()
        cached = (time.time() - t1) * 1000

        print(f"Uncached: {uncached:.1f} ms  (source={r1['stats'].get('cacheSource')})")
        print(f"Cached:   {cached:.1f} ms  (source={r2['stats'].get('cacheSource')})")
        print([h.get("line") for h in r2["hits"][:5]])

if __name__ == "__main__":
    main()
