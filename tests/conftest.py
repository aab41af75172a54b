"""Shared test setup."""

from tests.mock_utils import (  # noqa: F401
    InlineTransaction,
    MockBatch,
    inline_transactions,
    make_db,
    patch_mockfirestore,
)

patch_mockfirestore()
