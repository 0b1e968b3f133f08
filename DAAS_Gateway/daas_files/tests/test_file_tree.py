import pytest

from DAAS_Gateway.daas_files.file_tree import (
    build_file_tree,
    count_files,
    detect_project_type,
    find_node,
    mime_type_for,
)


def test_tree_creates_intermediate_directories():
    tree = build_file_tree({"a/b/c.txt": b"hello"})
    a = tree.children["a"]
    b = a.children["b"]
    leaf = b.children["c.txt"]
    assert (a.type, a.path) == ("directory", "/a")
    assert (b.type, b.path) == ("directory", "/a/b")
    assert (leaf.type, leaf.path, leaf.size, leaf.mime_type) == ("file", "/a/b/c.txt", 5, "text/plain")


def test_empty_tree():
    tree = build_file_tree({})
    assert tree.to_dict() == {"name": "/", "type": "directory", "path": "/", "children": {}}
    assert count_files(tree) == 0


def test_count_files():
    assert count_files(build_file_tree({"a.txt": b"", "d/b.txt": b"", "d/e/c.txt": b""})) == 3


def test_to_dict_shapes():
    d = build_file_tree({"img/logo.png": b"12"}).to_dict()
    leaf = d["children"]["img"]["children"]["logo.png"]
    assert leaf == {"name": "logo.png", "type": "file", "path": "/img/logo.png", "size": 2, "mimeType": "image/png"}
    assert "children" not in leaf


@pytest.mark.parametrize("path,mime", [
    ("x.JSON", "application/json"),
    ("x.py", "text/x-python"),
    ("Makefile", "application/octet-stream"),
])
def test_mime_type_for(path, mime):
    assert mime_type_for(path) == mime


@pytest.mark.parametrize("files,expected", [
    ({"functions/api.js": b"", "vercel.json": b""}, "vercel"),
    ({"netlify/x": b"", "netlify.toml": b""}, "netlify"),
    ({"Dockerfile": b"", "package.json": b""}, "docker"),
    ({"package.json": b"", "src/index.js": b""}, "nodejs"),
    ({"index.html": b"", "assets/app.css": b""}, "static-html"),
    ({"package.json": b""}, "npm-package"),
    ({"pyproject.toml": b""}, "python"),
    ({"go.mod": b""}, "go"),
    ({"Cargo.toml": b""}, "rust"),
    ({"sub/package.json": b""}, "unknown"),
    ({}, "unknown"),
])
def test_detect_project_type(files, expected):
    assert detect_project_type(files) == expected


def test_find_node():
    tree = build_file_tree({"src/lib/a.js": b"a"}).to_dict()
    assert find_node(tree, "")["path"] == "/"
    assert find_node(tree, "/src/lib")["type"] == "directory"
    assert find_node(tree, "src/lib/a.js")["size"] == 1
    assert find_node(tree, "src/missing") is None
    assert find_node(tree, "src/lib/a.js/deeper") is None
