"""
Tracker Backend - HTTP surface for the project dashboard.

This package provides a FastAPI backend that reads tracker data from the
relational store, derives the dashboard views and serves them to the
frontend, along with the mutation endpoints used by its forms.
"""
