"""Test that the project setup is working correctly."""

import kora_rent_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert kora_rent_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from kora_rent_tracker import chain
    from kora_rent_tracker import reclaim
    from kora_rent_tracker import reporting
    from kora_rent_tracker import storage
    from kora_rent_tracker import tracker

    # Just verify imports work
    assert chain is not None
    assert reclaim is not None
    assert reporting is not None
    assert storage is not None
    assert tracker is not None
