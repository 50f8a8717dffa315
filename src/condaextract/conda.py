import os
import sys
import shutil
import tarfile
import zipfile
import zlib
from contextlib import closing, contextmanager

if sys.version_info >= (3, 14):
    from compression import zstd
else:
    import backports.zstd as zstd

NESTED_ARCHIVE_SUFFIX = ".tar.zst"
INFO_MARKER = "info-"
PARENT_MODE = 0o755

ENTRY_ERRORS = (
    OSError,
    EOFError,
    tarfile.TarError,
    NotImplementedError,
    zipfile.BadZipFile,
    zlib.error,
    zstd.ZstdError,
)


class ExtractionError(Exception):
    pass


def destination_subdir(name):
    """
    Chooses the subdirectory the contents of a nested archive land in.

    Args:
        name (str): The name of the archive inside the conda package.

    Returns:
        str: "info" for the metadata bundle, "pkg" for everything else.
    """
    if INFO_MARKER in name:
        return "info"
    return "pkg"


def destination_path(root, name):
    # tar names are always "/" separated; a leading "/" must not drop the root
    return os.path.join(root, *[part for part in name.split("/") if part])


def is_supported(member):
    return member.isdir() or member.issym() or member.isreg()


def iter_members(fileobj):
    """
    Yield (tar, member) from a forward-only tar stream.

    Only the current member may be read; the stream cannot seek back.
    """
    with closing(tarfile.open(fileobj=fileobj, mode="r|")) as tar:
        for member in tar:
            yield tar, member


@contextmanager
def open_tar_zst(conda, fileinfo):
    """
    Opens a .tar.zst entry of a conda package for sequential reading.

    Args:
        conda (zipfile.ZipFile): The opened conda package.
        fileinfo (zipfile.ZipInfo): The nested archive entry.

    Yields:
        An iterator of (tar, member) pairs in archive order.
    """
    with conda.open(fileinfo) as stream, zstd.open(stream) as pkg:
        with closing(iter_members(pkg)) as members:
            yield members


def makedirs(path, mode):
    """
    Creates a directory and every missing ancestor, all with the given mode.
    """
    head = os.path.dirname(path)
    if head and head != path and not os.path.isdir(head):
        makedirs(head, mode)
    try:
        os.mkdir(path, mode)
    except FileExistsError:
        if not os.path.isdir(path):
            raise


def remove_existing(path):
    # a file left by an earlier run may be read-only or a symlink
    if os.path.islink(path) or os.path.isfile(path):
        os.unlink(path)


def extract_member(tar, member, destination):
    path = destination_path(destination, member.name)
    if member.isdir():
        makedirs(path, member.mode)
    elif member.issym():
        makedirs(os.path.dirname(path), PARENT_MODE)
        remove_existing(path)
        os.symlink(member.linkname, path)
    elif member.isreg():
        makedirs(os.path.dirname(path), PARENT_MODE)
        remove_existing(path)
        with open(path, "wb") as file:
            shutil.copyfileobj(tar.extractfile(member), file)
        os.chmod(path, member.mode)
    else:
        print(f"Skipping unsupported TAR entry: {member.name}")


def extract_tar_zst(conda, fileinfo, destination):
    """
    Replays a zstd compressed tar entry of a conda package onto disk.

    Directories, symlinks and regular files are reproduced with their stored
    mode bits; other entry types are reported and skipped.

    Args:
        conda (zipfile.ZipFile): The opened conda package.
        fileinfo (zipfile.ZipInfo): The nested archive entry.
        destination (str): The directory the archive is extracted into.
    """
    with open_tar_zst(conda, fileinfo) as members:
        for tar, member in members:
            extract_member(tar, member, destination)


def copy_file(conda, fileinfo, target_dir):
    path = os.path.join(target_dir, fileinfo.filename)
    with conda.open(fileinfo) as source, open(path, "wb") as file:
        shutil.copyfileobj(source, file)


def open_package(package_filename):
    try:
        return zipfile.ZipFile(package_filename)
    except (OSError, zipfile.BadZipFile) as error:
        raise ExtractionError(f"Failed to open .conda file: {error}") from error


def extract_package(package_filename, target_dir):
    """
    Extracts a conda package into a target directory.

    Nested .tar.zst archives are unpacked below target_dir/pkg or
    target_dir/info, any other entry is copied verbatim below target_dir.

    Args:
        package_filename (str): The path to the conda package.
        target_dir (str): The directory to extract into, created if missing.

    Raises:
        ExtractionError: On the first failure, naming the offending entry.
    """
    try:
        os.makedirs(target_dir, PARENT_MODE, exist_ok=True)
    except OSError as error:
        raise ExtractionError(
            f"Failed to create target directory: {error}"
        ) from error
    with open_package(package_filename) as conda:
        for fileinfo in conda.infolist():
            try:
                if fileinfo.filename.endswith(NESTED_ARCHIVE_SUFFIX):
                    destination = os.path.join(
                        target_dir, destination_subdir(fileinfo.filename)
                    )
                    extract_tar_zst(conda, fileinfo, destination)
                else:
                    copy_file(conda, fileinfo, target_dir)
            except ENTRY_ERRORS as error:
                raise ExtractionError(
                    f"Failed to extract {fileinfo.filename}: {error}"
                ) from error


def list_package(package_filename):
    """
    Iterates over the paths an extraction of a conda package would produce.

    Args:
        package_filename (str): The path to the conda package.

    Yields:
        (entry name, path relative to the target directory) for each file,
        directory and symlink.
    """
    with open_package(package_filename) as conda:
        for fileinfo in conda.infolist():
            if not fileinfo.filename.endswith(NESTED_ARCHIVE_SUFFIX):
                yield fileinfo.filename, fileinfo.filename
                continue
            subdir = destination_subdir(fileinfo.filename)
            try:
                with open_tar_zst(conda, fileinfo) as members:
                    for tar, member in members:
                        if is_supported(member):
                            yield fileinfo.filename, f"{subdir}/{member.name}"
            except ENTRY_ERRORS as error:
                raise ExtractionError(
                    f"Failed to read {fileinfo.filename}: {error}"
                ) from error
