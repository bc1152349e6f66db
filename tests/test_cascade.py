"""Tests for ordered fallback cascades."""

import unittest
from unittest.mock import MagicMock
import sys
from pathlib import Path

# Add src to path so we can import obaclient
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from obaclient.cascade import Attempt, Cascade
from obaclient.errors import BadServerResponseError, NotFoundError


class TestCascade(unittest.TestCase):
    """Test attempt ordering and error propagation."""

    def test_first_success_short_circuits(self):
        fallback = MagicMock(return_value="fallback")
        cascade = Cascade("test", [Attempt("primary", lambda: "primary"), Attempt("fallback", fallback)])

        self.assertEqual(cascade.run(), "primary")
        fallback.assert_not_called()

    def test_falls_back_after_not_found(self):
        primary = MagicMock(side_effect=NotFoundError("https://x/api/where/a.json"))
        cascade = Cascade("test", [Attempt("primary", primary), Attempt("fallback", lambda: [1, 2])])

        with self.assertLogs("obaclient.cascade", level="WARNING"):
            self.assertEqual(cascade.run(), [1, 2])
        primary.assert_called_once()

    def test_all_failing_raises_first_error(self):
        first = NotFoundError("https://x/api/where/a.json")
        second = BadServerResponseError(500, "https://x/api/where/b.json")
        third = BadServerResponseError(502, "https://x/api/where/c.json")
        cascade = Cascade(
            "test",
            [
                Attempt("a", MagicMock(side_effect=first)),
                Attempt("b", MagicMock(side_effect=second)),
                Attempt("c", MagicMock(side_effect=third)),
            ],
        )

        with self.assertLogs("obaclient.cascade", level="ERROR"):
            with self.assertRaises(NotFoundError) as ctx:
                cascade.run()
        self.assertIs(ctx.exception, first)

    def test_unexpected_exceptions_propagate(self):
        later = MagicMock()
        cascade = Cascade(
            "test",
            [Attempt("a", MagicMock(side_effect=RuntimeError("bug"))), Attempt("b", later)],
        )
        with self.assertRaises(RuntimeError):
            cascade.run()
        later.assert_not_called()

    def test_empty_cascade_rejected(self):
        with self.assertRaises(ValueError):
            Cascade("test", [])


if __name__ == "__main__":
    unittest.main()
