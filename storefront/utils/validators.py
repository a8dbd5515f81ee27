def require_positive_number(v: float, name: str = "value") -> None:
    if v <= 0:
        raise ValueError(f"{name} must be > 0")


def require_quantity(v: int, name: str = "quantity") -> None:
    # bool is an int subclass; True is not a quantity
    if isinstance(v, bool) or not isinstance(v, int):
        raise ValueError(f"{name} must be a whole number")
    require_positive_number(v, name)
