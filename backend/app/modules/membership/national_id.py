"""Brazilian individual taxpayer id (CPF) validation."""

import re

CPF_LENGTH = 11


def only_digits(value: object) -> str:
    return re.sub(r"\D", "", str(value or ""))


def cpf_check_digit(digits: str) -> int:
    """Check digit for a digit prefix using descending weights.

    Weights run from ``len(digits) + 1`` down to 2; the digit is 0 when the
    weighted sum leaves a remainder below 2 modulo 11, else 11 - remainder.
    """
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cpf(value: object) -> bool:
    """Validate a CPF, ignoring punctuation.

    Rejects anything that is not exactly 11 digits and sequences of one
    repeated digit, which pass the checksum but are never issued.
    """
    digits = only_digits(value)
    if len(digits) != CPF_LENGTH:
        return False
    if digits == digits[0] * CPF_LENGTH:
        return False
    first = cpf_check_digit(digits[:9])
    second = cpf_check_digit(digits[:9] + str(first))
    return digits[9:] == f"{first}{second}"
