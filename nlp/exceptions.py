"""
Errors raised by the transcript cleaning and field extraction stages.
"""


class InsufficientDataError(Exception):
    """
    The consultation transcript is too short to document.

    Surfaced to the doctor as "record again with more detail", so it carries
    its own code instead of the generic failure.
    """

    code = 'DADOS_INSUFICIENTES'

    def __init__(self, word_count, minimum):
        self.word_count = word_count
        self.minimum = minimum
        super().__init__(
            f"{self.code}: a transcrição tem apenas {word_count} palavras "
            f"(mínimo {minimum}). Grave novamente com mais detalhes da consulta."
        )
