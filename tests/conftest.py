import io
import os
import tarfile
import zipfile

import pytest

from condaextract.conda import zstd


def tar_zst(*members):
    """Build a zstd compressed tar from (TarInfo, content or None) pairs."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for info, content in members:
            if content is None:
                tar.addfile(info)
            else:
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
    return zstd.compress(buffer.getvalue())


def directory(name, mode=0o755):
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = mode
    return info, None


def regular(name, content, mode=0o644):
    info = tarfile.TarInfo(name)
    info.mode = mode
    return info, content


def symlink(name, target):
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    info.mode = 0o777
    return info, None


def hardlink(name, target):
    info = tarfile.TarInfo(name)
    info.type = tarfile.LNKTYPE
    info.linkname = target
    info.mode = 0o644
    return info, None


@pytest.fixture(autouse=True)
def umask():
    previous = os.umask(0o022)
    yield
    os.umask(previous)


@pytest.fixture
def make_conda(tmp_path):
    def make(entries, name="pkg-1.0-0.conda"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as conda:
            for entry_name, data in entries:
                conda.writestr(entry_name, data)
        return path

    return make


@pytest.fixture
def corrupt_deflated(tmp_path):
    """Build a package whose deflated entry holds an invalid deflate stream."""

    def make(entry_name, name="broken-1.0-0.conda"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as conda:
            conda.writestr(entry_name, b"{}" * 1024)
        with zipfile.ZipFile(path) as conda:
            info = conda.getinfo(entry_name)
        data = bytearray(path.read_bytes())
        start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
        # reserved block type
        data[start : start + info.compress_size] = b"\xff" * info.compress_size
        path.write_bytes(bytes(data))
        return path

    return make


def truncated_member(name, declared_size, content):
    """A zstd compressed tar whose only member is shorter than its header says."""
    info = tarfile.TarInfo(name)
    info.size = declared_size
    return zstd.compress(info.tobuf() + content)
