"""Property-based tests for CPF validation.

Tests that:
- An 11-digit CPF is valid iff its check digits match the mod-11 checksum
- Repeated-digit sequences are always invalid
- Inputs are compared after stripping punctuation
"""

from hypothesis import given, settings, strategies as st

from app.modules.membership.national_id import cpf_check_digit, is_valid_cpf


def reference_check_digits(base: str) -> str:
    """Independent checksum: weights 10..2 for the first digit, 11..2 for the second."""
    first_sum = sum(int(d) * w for d, w in zip(base, range(10, 1, -1)))
    first = 0 if first_sum % 11 < 2 else 11 - first_sum % 11
    second_sum = sum(int(d) * w for d, w in zip(base + str(first), range(11, 1, -1)))
    second = 0 if second_sum % 11 < 2 else 11 - second_sum % 11
    return f"{first}{second}"


digits_strategy = st.text(alphabet="0123456789", min_size=11, max_size=11)


class TestCpfValidation:
    """Checksum law for CPF validation."""

    @given(digits=digits_strategy)
    @settings(max_examples=500)
    def test_valid_iff_check_digits_match(self, digits: str) -> None:
        """*For any* 11 digits, validity SHALL equal the checksum match."""
        expected = (
            digits != digits[0] * 11
            and digits[9:] == reference_check_digits(digits[:9])
        )

        assert is_valid_cpf(digits) == expected

    @given(base=st.text(alphabet="0123456789", min_size=9, max_size=9))
    @settings(max_examples=200)
    def test_generated_cpf_is_valid(self, base: str) -> None:
        """*For any* non-repeated base, appending its check digits SHALL yield a valid CPF."""
        first = cpf_check_digit(base)
        second = cpf_check_digit(base + str(first))
        cpf = f"{base}{first}{second}"

        assert is_valid_cpf(cpf) == (cpf != cpf[0] * 11)

    @given(digit=st.sampled_from("0123456789"))
    def test_repeated_digits_are_invalid(self, digit: str) -> None:
        assert not is_valid_cpf(digit * 11)

    @given(digits=st.text(alphabet="0123456789", max_size=20).filter(lambda s: len(s) != 11))
    @settings(max_examples=100)
    def test_wrong_length_is_invalid(self, digits: str) -> None:
        assert not is_valid_cpf(digits)

    def test_punctuation_is_ignored(self) -> None:
        assert is_valid_cpf("123.456.789-09")
        assert is_valid_cpf(12345678909)
        assert not is_valid_cpf("123.456.789-00")

    def test_none_is_invalid(self) -> None:
        assert not is_valid_cpf(None)
