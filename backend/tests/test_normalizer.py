from app.services.classification.normalizer import normalize, signature_hash, top_frames


PLAYWRIGHT_STACK = """Error: locator.click: Target closed
    at CheckoutPage.submit (/home/runner/work/shop/tests/pages/checkout.ts:{line}:{col})
    at /home/runner/work/shop/tests/checkout.spec.ts:{spec_line}:{spec_col}
    at runTest (/home/runner/work/shop/node_modules/@playwright/test/lib/worker.js:412:9)"""


def test_line_numbers_do_not_change_the_signature() -> None:
    error = "Error: expect(received).toBeVisible() at checkout.spec.ts:{}:{}"
    first = signature_hash(error.format(33, 21), PLAYWRIGHT_STACK.format(line=12, col=7, spec_line=33, spec_col=21))
    second = signature_hash(error.format(40, 5), PLAYWRIGHT_STACK.format(line=15, col=3, spec_line=40, spec_col=5))
    assert first == second
    assert len(first) == 64
    assert all(c in "0123456789abcdef" for c in first)


def test_different_errors_have_different_signatures() -> None:
    assert signature_hash("TimeoutError: waiting for #pay", None) != signature_hash("Error: ENOENT: no such file", None)


def test_volatile_tokens_are_replaced() -> None:
    text = normalize(
        "Order 3f2b8c1e-9a4d-4c6b-8e2f-1a2b3c4d5e6f failed at 2026-03-01T10:15:30Z in /srv/app/orders.py",
        None,
    )
    assert "<UUID>" in text
    assert "<TS>" in text
    assert "<PATH>/orders.py" in text
    assert "3f2b8c1e" not in text


def test_only_first_message_line_and_top_frames_are_kept() -> None:
    text = normalize("AssertionError: totals differ\nExpected 10\nReceived 12", PLAYWRIGHT_STACK.format(line=1, col=1, spec_line=2, spec_col=2))
    assert "received" not in text
    assert "runtest" not in text
    assert "checkoutpage.submit" in text


def test_top_frames_reads_js_and_python_traces() -> None:
    js = top_frames(PLAYWRIGHT_STACK.format(line=1, col=2, spec_line=3, spec_col=4))
    assert js == ["CheckoutPage.submit", "checkout.spec.ts:3:4"]

    py = top_frames(
        'Traceback (most recent call last):\n'
        '  File "/app/tests/test_cart.py", line 42, in test_add_item\n'
        '    cart.add(item)\n'
        '  File "/app/shop/cart.py", line 17, in add\n'
    )
    assert py == ["test_add_item", "add"]


def test_missing_text_normalizes_to_empty_signature_input() -> None:
    assert normalize(None, None) == ""
    assert signature_hash(None, None) == signature_hash("", "")
