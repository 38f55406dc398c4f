"""Volume backend using the LVM command-line tools."""

from __future__ import annotations

import asyncio
from abc import ABCMeta, abstractmethod
from contextlib import suppress
from pathlib import Path
from typing import Annotated, override

from pydantic import BaseModel, BeforeValidator, ValidationError
from structlog.stdlib import BoundLogger

from ..exceptions import OperationTimeoutError, VolumeBackendError
from ..models.domain.volumes import LogicalVolumeRecord, VolumeGroupRecord
from ..timeout import Timeout

__all__ = [
    "LVMVolumeBackend",
    "VolumeBackend",
]


def _parse_size(v: object) -> object:
    """Strip the byte suffix LVM adds if ``--nosuffix`` is ignored."""
    if isinstance(v, str):
        return v.strip().removesuffix("B")
    return v


_Size = Annotated[int, BeforeValidator(_parse_size)]


class _VolumeGroupReport(BaseModel):
    vg_name: str
    vg_size: _Size
    vg_free: _Size


class _LogicalVolumeReport(BaseModel):
    lv_name: str
    vg_name: str
    lv_size: _Size


class _VolumeGroupSection(BaseModel):
    vg: list[_VolumeGroupReport]


class _LogicalVolumeSection(BaseModel):
    lv: list[_LogicalVolumeReport]


class _VolumeGroupOutput(BaseModel):
    report: list[_VolumeGroupSection]


class _LogicalVolumeOutput(BaseModel):
    report: list[_LogicalVolumeSection]


class VolumeBackend(metaclass=ABCMeta):
    """Access to the volume groups and logical volumes of the local node."""

    @abstractmethod
    async def list_volume_groups(
        self, timeout: Timeout
    ) -> list[VolumeGroupRecord]:
        """List the volume groups on the node.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout expired.
        VolumeBackendError
            Raised if the volume groups could not be listed.
        """

    @abstractmethod
    async def list_logical_volumes(
        self, timeout: Timeout
    ) -> list[LogicalVolumeRecord]:
        """List the logical volumes on the node.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout expired.
        VolumeBackendError
            Raised if the logical volumes could not be listed.
        """

    @abstractmethod
    async def resize(
        self, volume: LogicalVolumeRecord, size: int, timeout: Timeout
    ) -> None:
        """Grow a logical volume.

        Parameters
        ----------
        volume
            Logical volume to grow.
        size
            New size in bytes.
        timeout
            Timeout on operation.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout expired.
        VolumeBackendError
            Raised if the volume could not be resized.
        """


class LVMVolumeBackend(VolumeBackend):
    """Volume backend that runs the ``lvm`` command.

    Parameters
    ----------
    lvm_command
        Path to the ``lvm`` binary.
    resize_filesystem
        Whether to resize the filesystem along with the logical volume.
    logger
        Logger to use.
    """

    def __init__(
        self,
        lvm_command: Path,
        *,
        resize_filesystem: bool = True,
        logger: BoundLogger,
    ) -> None:
        self._lvm = lvm_command
        self._resize_filesystem = resize_filesystem
        self._logger = logger

    @override
    async def list_volume_groups(
        self, timeout: Timeout
    ) -> list[VolumeGroupRecord]:
        args = ["vgs", "-o", "vg_name,vg_size,vg_free", *self._report_args()]
        output = await self._run(args, timeout)
        try:
            report = _VolumeGroupOutput.model_validate_json(output)
        except ValidationError as e:
            raise self._parse_error(args, e) from e
        return [
            VolumeGroupRecord(
                name=vg.vg_name, size_bytes=vg.vg_size, free_bytes=vg.vg_free
            )
            for section in report.report
            for vg in section.vg
        ]

    @override
    async def list_logical_volumes(
        self, timeout: Timeout
    ) -> list[LogicalVolumeRecord]:
        args = ["lvs", "-o", "lv_name,vg_name,lv_size", *self._report_args()]
        output = await self._run(args, timeout)
        try:
            report = _LogicalVolumeOutput.model_validate_json(output)
        except ValidationError as e:
            raise self._parse_error(args, e) from e
        return [
            LogicalVolumeRecord(
                name=lv.lv_name, vg_name=lv.vg_name, size_bytes=lv.lv_size
            )
            for section in report.report
            for lv in section.lv
        ]

    @override
    async def resize(
        self, volume: LogicalVolumeRecord, size: int, timeout: Timeout
    ) -> None:
        args = ["lvextend", "-L", f"{size}b"]
        if self._resize_filesystem:
            args.append("-r")
        args.append(f"{volume.vg_name}/{volume.name}")
        await self._run(args, timeout)

    def _parse_error(
        self, args: list[str], error: ValidationError
    ) -> VolumeBackendError:
        command = [str(self._lvm), *args]
        msg = f"Cannot parse output of lvm {args[0]}"
        return VolumeBackendError(msg, command, str(error))

    def _report_args(self) -> list[str]:
        return ["--reportformat", "json", "--units", "b", "--nosuffix"]

    async def _run(self, args: list[str], timeout: Timeout) -> str:
        """Run an LVM subcommand and return its standard output.

        Parameters
        ----------
        args
            Arguments to :command:`lvm`, starting with the subcommand.
        timeout
            Timeout on the command. The command is killed and reaped if it
            does not finish in time or the caller is cancelled.

        Returns
        -------
        str
            Standard output of the command.

        Raises
        ------
        OperationTimeoutError
            Raised if the command did not finish within the timeout.
        VolumeBackendError
            Raised if the command could not be run or failed.
        """
        command = [str(self._lvm), *args]
        self._logger.debug("Running LVM command", command=command)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            msg = f"Cannot run lvm {args[0]}"
            raise VolumeBackendError(msg, command, str(e)) from e
        try:
            async with timeout.enforce():
                stdout, stderr = await proc.communicate()
        except (OperationTimeoutError, asyncio.CancelledError):
            # An enclosing timeout arrives here as cancellation.
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            msg = f"lvm {args[0]} failed with status {proc.returncode}"
            error = stderr.decode(errors="replace").strip()
            raise VolumeBackendError(msg, command, error or None)
        return stdout.decode(errors="replace")
