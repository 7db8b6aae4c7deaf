"""
Wholesale catalog sync backend.

Provides:
- A sync engine that logs in to the Tropicana Wholesale portal, crawls its
  listings and reconciles them into the local catalog table
- REST API endpoints for triggering syncs and reviewing sync history
- Catalog and settings management endpoints for the admin dashboard
"""
