# -*- coding: utf-8 -*-
"""Integrações com serviços externos (DirectData, ViaCEP)."""
