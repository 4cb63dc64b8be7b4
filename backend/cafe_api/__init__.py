"""
FastAPI backend for the cafe pricing service.

Provides REST API endpoints for:
- Managing the ingredient catalog and its market prices
- Viewing price history and trends
- Refreshing prices from AGMARKNET and retail listings
- Configuring scheduled price updates
"""
