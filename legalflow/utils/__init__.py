# -*- coding: utf-8 -*-
"""Utilitários partilhados (validação de documentos, datas, sanitização)."""
