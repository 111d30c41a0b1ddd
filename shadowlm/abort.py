# shadowlm/abort.py


class AbortSignal:
    """
    Booleano compartido de cancelación cooperativa.
    Lo activa el usuario o el propio ejecutor ante un fallo irrecuperable.
    Solo se consulta en checkpoints: nunca interrumpe una llamada en curso.
    """

    def __init__(self):
        self._set = False

    def set(self) -> None:
        self._set = True

    def clear(self) -> None:
        self._set = False

    def is_set(self) -> bool:
        return self._set

    def __repr__(self) -> str:
        return f"AbortSignal(set={self._set})"
