"""
Scanner — world-side producer

- Resolves one visible surface block per column (SurfaceResolver)
- Scans bounds in batches with crash-safe resume (ScanOrchestrator / ScanController)
- Sends chunk records, live edits and player positions to the map server
"""
