import os

# this file is in histeq/kernel/system/paths.py
PACKAGE_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def get_resource_path(relative_path: str) -> str:
    """
    Absolute path to a resource shipped inside the histeq package.
    """
    return os.path.join(PACKAGE_ROOT, relative_path)


def get_shader_path(name: str) -> str:
    """Resolves a WGSL file of the equalization feature by stem."""
    return get_resource_path(
        os.path.join("features", "equalization", "shaders", f"{name}.wgsl")
    )
