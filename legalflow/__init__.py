# -*- coding: utf-8 -*-
"""
LegalFlow - Package legalflow
Gestão de escritório de advocacia sobre Supabase.
"""

__version__ = "1.0.0"
