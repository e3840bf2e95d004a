"""Autotracks: dealership vehicle inventory with dealership-defined properties."""
