# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/metadata.py
"""Identity of the working instance, read from the instance metadata service (IMDSv2)."""

from __future__ import annotations

import logging
from typing import Optional

import requests

LOG = logging.getLogger(__name__)

IMDS_BASE = "http://169.254.169.254/latest"


class InstanceMetadata:
    def __init__(self, *, base_url: str = IMDS_BASE, timeout_s: float = 2.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self._token: Optional[str] = None

    def _get_token(self) -> Optional[str]:
        if self._token is None:
            try:
                resp = self.session.put(
                    f"{self.base_url}/api/token",
                    headers={"X-aws-ec2-metadata-token-ttl-seconds": "21600"},
                    timeout=self.timeout_s,
                )
                if resp.ok:
                    self._token = resp.text.strip()
            except requests.RequestException as e:
                # IMDSv1 fallback below
                LOG.debug("IMDSv2 token request failed: %s", e)
        return self._token

    def get(self, path: str) -> str:
        headers = {}
        token = self._get_token()
        if token:
            headers["X-aws-ec2-metadata-token"] = token
        resp = self.session.get(f"{self.base_url}/meta-data/{path.lstrip('/')}", headers=headers, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.text.strip()

    def instance_id(self) -> str:
        return self.get("instance-id")

    def availability_zone(self) -> str:
        return self.get("placement/availability-zone")
