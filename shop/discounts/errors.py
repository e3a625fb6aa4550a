class DiscountError(Exception):
    pass


class DiscountNotFound(DiscountError):
    def __init__(self, key: str):
        super().__init__("Invalid discount code")
        self.key = key


class ConfigurationError(DiscountError):
    """Битое определение скидки в хранилище (не ошибка покупателя)."""


class CodeGenerationExhausted(DiscountError):
    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique discount code in {attempts} attempts")
        self.attempts = attempts


class DuplicateCodeError(DiscountError):
    def __init__(self, code: str):
        super().__init__("A discount with this code already exists")
        self.code = code


class RedemptionRejected(DiscountError):
    def __init__(self, code: str, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason
