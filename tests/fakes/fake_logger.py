# SPDX-License-Identifier: LGPL-3.0-or-later
import logging


class FakeLogger(logging.Logger):
    """Logger that keeps (levelname, message) pairs instead of printing them."""

    def __init__(self, name="fake"):
        super().__init__(name, level=1)
        self.records = []
        self.propagate = False

    def handle(self, record):
        self.records.append((record.levelname.lower(), record.getMessage()))

    def messages(self, level=None):
        return [m for lvl, m in self.records if level is None or lvl == level]
