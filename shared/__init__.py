"""GeoScriptHub shared code, importable as ``shared.python``."""
