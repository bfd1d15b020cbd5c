# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
from __future__ import annotations

from .parser import build_parser, config_from_args, parse_args_with_config

__all__ = ["build_parser", "config_from_args", "parse_args_with_config"]
