"""
Spatiotemporal overlay dashboard.

Overlays time-varying layer statistics on an ipyleaflet map and keeps the
legend, time control, sidebar and comparison panels in sync with it.

Run with: solara run app.py
"""

__version__ = '0.1.0'
