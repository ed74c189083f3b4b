# -*- coding: utf-8 -*-
"""Jornadas do cliente: templates de etapas, instâncias e regras automáticas."""
