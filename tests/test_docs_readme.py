from pathlib import Path

from polyrun import ErrorCode


def test_readme_has_explicit_honest_scope_statement() -> None:
    root = Path(__file__).resolve().parents[1]
    readme = (root / "README.md").read_text(encoding="utf-8")

    assert "Honest scope:" in readme
    assert "Good fit:" in readme
    assert "Not good alone:" in readme


def test_readme_common_gotchas_are_current() -> None:
    root = Path(__file__).resolve().parents[1]
    readme = (root / "README.md").read_text(encoding="utf-8")

    assert "### Common Gotchas" in readme
    assert "`importlib` is blocked intentionally in all modes." in readme
    assert "`fallback_on_compile_failure = false`" in readme


def test_readme_lists_every_diagnostic_code() -> None:
    root = Path(__file__).resolve().parents[1]
    readme = (root / "README.md").read_text(encoding="utf-8")

    missing = [
        code.value
        for code in ErrorCode
        if code is not ErrorCode.CLEANUP_FAILURE and f"`{code.value}`" not in readme
    ]
    assert not missing
