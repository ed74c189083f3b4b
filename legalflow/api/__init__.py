# -*- coding: utf-8 -*-
"""Routers FastAPI da API v1."""
