"""Test that the project setup is working correctly."""

import token_sniper


def test_version() -> None:
    """Test that version is defined."""
    assert token_sniper.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from token_sniper import detector, executor, ingestor, pipeline, storage

    assert ingestor is not None
    assert detector is not None
    assert executor is not None
    assert storage is not None
    assert pipeline is not None
