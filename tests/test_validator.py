import json

import pytest

from paysim.payment.errors import (
    InvalidCardNumber,
    InvalidRequestShape,
    InvalidTokenFormat,
    MissingField,
)
from paysim.payment.models import DirectRequest, PaymentInfo, SimulationMode, TokenRequest
from paysim.payment.validator import validate_payment_request


def test_rejects_both_token_and_card(card_info, browser_env):
    body = {"stripeToken": "tok_visa", "cardInfo": card_info, "browserEnv": browser_env}
    with pytest.raises(InvalidRequestShape):
        validate_payment_request(body)


def test_rejects_neither_token_nor_card(browser_env):
    with pytest.raises(InvalidRequestShape):
        validate_payment_request({"browserEnv": browser_env})


def test_rejects_non_object_body():
    with pytest.raises(InvalidRequestShape):
        validate_payment_request(["not", "an", "object"])


@pytest.mark.parametrize("env", [
    None,
    {"viewport": {"width": 1280, "height": 800}},
    {"userAgent": "   ", "viewport": {"width": 1280, "height": 800}},
    {"userAgent": "UA"},
    {"userAgent": "UA", "viewport": {"width": 0, "height": 800}},
])
def test_browser_env_required_for_browser_routes(card_info, env):
    with pytest.raises(InvalidRequestShape):
        validate_payment_request({"cardInfo": card_info, "browserEnv": env})


def test_browser_env_optional_when_not_browser_mediated(card_info):
    classified = validate_payment_request({"cardInfo": card_info}, require_browser_env=False)
    assert classified.browserEnv is None


def test_direct_mode_classified(card_info, browser_env):
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert isinstance(classified, DirectRequest)
    assert classified.mode == SimulationMode.DIRECT
    assert classified.cardInfo.last4 == "4242"
    assert classified.browserEnv.viewport.width == 1280


def test_missing_card_fields_are_all_listed(browser_env):
    body = {"cardInfo": {"name": "Jane Doe", "number": "4242424242424242"}, "browserEnv": browser_env}
    with pytest.raises(MissingField) as exc:
        validate_payment_request(body)
    assert exc.value.fields == ["expMonth", "expYear", "cvv"]
    assert "expMonth" in str(exc.value)


@pytest.mark.parametrize("length", [1, 3, 12, 20, 25])
def test_card_number_length_outside_range_rejected(card_info, browser_env, length):
    card_info["number"] = "4" * length
    with pytest.raises(InvalidCardNumber) as exc:
        validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert "length" in str(exc.value)


@pytest.mark.parametrize("length", range(13, 20))
def test_card_number_length_inside_range_accepted(card_info, browser_env, length):
    card_info["number"] = "4" * length
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert len(classified.cardInfo.number) == length


def test_card_number_with_spaces_is_normalised(card_info, browser_env):
    card_info["number"] = "4242 4242 4242 4242"
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert classified.cardInfo.number == "4242424242424242"


def test_non_digit_card_number_rejected(card_info, browser_env):
    card_info["number"] = "4242-abcd-4242-4242"
    with pytest.raises(InvalidCardNumber):
        validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})


def test_numeric_expiry_values_are_accepted(card_info, browser_env):
    card_info.update(expMonth=7, expYear=2031)
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert classified.cardInfo.expiry == "0731"


@pytest.mark.parametrize("token", [
    "tok_visa",
    "tok_1NkXyz2eZvKYlo2C",
    "pm_card_visa",
    json.dumps({"id": "pm_test_123"}),
    json.dumps({"id": "tok_mastercard"}),
    json.dumps({"id": "embedded_card_data", "card": {"number": "4242424242424242"}}),
    json.dumps({"id": "payment_method", "paymentMethodId": "pm_abc"}),
    json.dumps({"id": "whatever", "hasCardData": True}),
    json.dumps({"isTestToken": True}),
])
def test_recognised_tokens_accepted(browser_env, token):
    classified = validate_payment_request({"stripeToken": token, "browserEnv": browser_env})
    assert isinstance(classified, TokenRequest)
    assert classified.mode == SimulationMode.TOKEN
    assert classified.token == token


@pytest.mark.parametrize("token", [
    "abc123",
    "tok-visa",
    "card_123",
    json.dumps({"id": "src_123"}),
    json.dumps({"noid": True}),
    json.dumps(["tok_visa"]),
    "{not json",
])
def test_unrecognised_tokens_rejected(browser_env, token):
    with pytest.raises(InvalidTokenFormat):
        validate_payment_request({"stripeToken": token, "browserEnv": browser_env})


def test_token_parse_error_detail_is_reported(browser_env):
    with pytest.raises(InvalidTokenFormat) as exc:
        validate_payment_request({"stripeToken": "{broken", "browserEnv": browser_env})
    assert "not valid JSON" in str(exc.value)


def test_payment_info_amount_must_be_positive(card_info, browser_env):
    body = {"cardInfo": card_info, "browserEnv": browser_env, "paymentInfo": {"amount": -5}}
    with pytest.raises(InvalidRequestShape):
        validate_payment_request(body)


@pytest.mark.parametrize("amount", [1e308, 1000000.0, float("inf"), float("nan")])
def test_payment_info_amount_out_of_range_rejected(card_info, browser_env, amount):
    body = {"cardInfo": card_info, "browserEnv": browser_env, "paymentInfo": {"amount": amount}}
    with pytest.raises(InvalidRequestShape):
        validate_payment_request(body)


def test_largest_amount_accepted(card_info, browser_env):
    body = {"cardInfo": card_info, "browserEnv": browser_env, "paymentInfo": {"amount": 999999.99}}
    assert validate_payment_request(body).paymentInfo.amount_minor() == 99999999


@pytest.mark.parametrize("amount,minor", [(0.125, 13), (0.005, 1), (2.675, 268), (49.95, 4995)])
def test_amount_rounds_half_up(amount, minor):
    assert PaymentInfo(amount=amount).amount_minor() == minor


@pytest.mark.parametrize("field,value", [
    ("expMonth", "ab"),
    ("expMonth", "13"),
    ("expMonth", "0"),
    ("expMonth", 1.5),
    ("expYear", "20x0"),
    ("expYear", "203"),
])
def test_bad_expiry_rejected(card_info, browser_env, field, value):
    card_info[field] = value
    with pytest.raises(InvalidRequestShape, match=field):
        validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})


def test_two_digit_expiry_year_accepted(card_info, browser_env):
    card_info.update(expMonth="03", expYear="31")
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    assert classified.cardInfo.expiry == "0331"


def test_amount_required_when_requested(card_info, browser_env):
    body = {"cardInfo": card_info, "browserEnv": browser_env, "paymentInfo": {}}
    with pytest.raises(MissingField) as exc:
        validate_payment_request(body, require_amount=True)
    assert exc.value.fields == ["amount"]


def test_amount_converted_to_minor_units(card_info, browser_env):
    body = {"cardInfo": card_info, "browserEnv": browser_env,
            "paymentInfo": {"amount": 19.99, "description": "Order 42"}}
    classified = validate_payment_request(body)
    assert classified.paymentInfo.amount_minor() == 1999
    assert classified.paymentInfo.description_or_default() == "Order 42"


def test_default_amount_and_description(card_info):
    classified = validate_payment_request({"cardInfo": card_info}, require_browser_env=False)
    assert classified.paymentInfo.amount_minor() == 1000
    assert classified.paymentInfo.description_or_default() == "Test Payment Transaction"


def test_classified_request_is_immutable(card_info, browser_env):
    classified = validate_payment_request({"cardInfo": card_info, "browserEnv": browser_env})
    with pytest.raises(Exception):
        classified.mode = SimulationMode.TOKEN
