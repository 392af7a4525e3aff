import secrets
from collections.abc import Callable

from filedrop.config import settings
from filedrop.errors import CodeSpaceExhausted


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CodeGenerator:
    def __init__(self, alphabet: str, length: int, max_attempts: int) -> None:
        if length <= 0:
            raise ValueError("code length must be positive")
        if len(set(alphabet)) < 2:
            raise ValueError("code alphabet needs at least two distinct characters")
        self.alphabet = alphabet
        self.length = length
        self.max_attempts = max_attempts

    def draw(self) -> str:
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))

    def issue(self, is_taken: Callable[[str], bool]) -> str:
        """Draw codes until one is not taken."""
        for _ in range(max(1, self.max_attempts)):
            code = self.draw()
            if not is_taken(code):
                return code
        raise CodeSpaceExhausted(f"no free code after {self.max_attempts} draws")


def build_code_generator() -> CodeGenerator:
    return CodeGenerator(settings.code_alphabet, settings.code_length, settings.code_max_attempts)
