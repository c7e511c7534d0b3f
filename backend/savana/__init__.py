"""
SAVANA Sensor Collector
=======================

Backend for the SAVANA environmental-monitoring dashboard.

HOW IT'S ORGANIZED:
------------------
- models/    = Data structures (what does a reading look like?)
- services/  = Workers (fetch from the sensor API, store, schedule, chart)
- routers/   = API endpoints (the doors into our app)
- utils/     = Validation and timestamp helpers
- config.py  = Settings from environment variables
- errors.py  = One exception per way a poll can fail
- main.py    = Puts it all together and starts the server
- __main__.py = Command line (`savana fetch`, `savana serve`)
"""

__version__ = "1.0.0"
