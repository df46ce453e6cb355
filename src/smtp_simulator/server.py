# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module builds a :class:`SimulatorCore` from the loaded settings and
exposes the configured FastAPI application.

Usage:
    uvicorn smtp_simulator.server:app --host 127.0.0.1 --port 8000

Environment variables:
    SMTPSIM_CONFIG: Path to the INI configuration file.
"""

from __future__ import annotations

from .api import create_app
from .config_loader import load_settings
from .core import SimulatorCore
from .observer import LoggingObserver

_settings = load_settings()

_core = SimulatorCore.from_settings(_settings, observer=LoggingObserver())

app = create_app(_core, api_token=_settings.api_token)
