from catalogforge.core.ids import chunk_id_for, chunk_prefix_for


def test_chunk_id_uses_plain_slug_doc_ids_as_prefix() -> None:
    assert chunk_id_for("acme", 0) == "acme-chunk-001"
    assert chunk_id_for("supplier-a-catalog", 11) == "supplier-a-catalog-chunk-012"
    assert chunk_id_for(None, 2) == "doc-chunk-003"


def test_documents_sharing_a_suffix_get_distinct_chunk_ids() -> None:
    first = chunk_id_for("supplier-a-catalog", 0)
    second = chunk_id_for("supplier-b-catalog", 0)

    assert first != second


def test_cleaned_or_long_doc_ids_carry_a_digest_suffix() -> None:
    upper = chunk_prefix_for("Acme")
    lower = chunk_prefix_for("acme")
    long_a = chunk_prefix_for("x" * 40 + "a")
    long_b = chunk_prefix_for("x" * 40 + "b")

    assert lower == "acme"
    assert upper.startswith("acme-") and len(upper) == len("acme-") + 8
    assert long_a != long_b
    assert chunk_prefix_for("Acme") == upper
