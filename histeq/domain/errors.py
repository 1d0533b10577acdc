from typing import Optional


class EqualizationError(Exception):
    """
    Base class for every classified pipeline failure.
    Carries the stage and operation that were active when it occurred.
    """

    kind = "EqualizationError"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.operation = operation

    def __str__(self) -> str:
        context = []
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.operation:
            context.append(f"operation={self.operation}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class InvalidInputError(EqualizationError):
    """Empty image, zero pixel count or malformed pixel data."""

    kind = "InvalidInput"


class DeviceError(EqualizationError):
    """
    Context, program build, dispatch or readback failure on the compute device.
    """

    kind = "DeviceError"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        operation: Optional[str] = None,
        build_log: Optional[str] = None,
    ) -> None:
        super().__init__(message, stage=stage, operation=operation)
        self.build_log = build_log

    def __str__(self) -> str:
        text = super().__str__()
        if self.build_log:
            return f"{text}\nBuild Log:\t{self.build_log}"
        return text


class TransferError(DeviceError):
    """Partial or failed host/device memory copy."""

    kind = "TransferError"
