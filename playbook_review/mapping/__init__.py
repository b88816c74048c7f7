"""Rule-to-section mapping: normalizers, response parsers and the batched mapper."""
