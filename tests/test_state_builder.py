"""Tests for screen state assembly and description generation."""

from screensense.vision.models import BoundingBox, DetectedElement, OCRWord, ScreenDimensions, WindowInfo
from screensense.vision.state_builder import ScreenStateBuilder, group_lines, normalize_bbox, screen_region

DIMENSIONS = ScreenDimensions(1000, 1000)
WINDOW = WindowInfo(app_name="Notes", title="Draft", url="https://www.example.com/doc")


def word(text, left, top, width=40, height=12, confidence=0.9):
    return OCRWord(text=text, bbox=BoundingBox(left, top, left + width, top + height), confidence=confidence)


def test_normalize_bbox_and_region():
    normalized = normalize_bbox(BoundingBox(900, 900, 1000, 1000), DIMENSIONS)

    assert normalized.as_tuple() == (899, 899, 999, 999)
    assert screen_region(normalized) == "bottom-right"
    assert screen_region(normalize_bbox(BoundingBox(0, 0, 10, 10), DIMENSIONS)) == "top-left"


def test_group_lines_reading_order():
    words = [
        word("world", 60, 10),
        word("Hello", 10, 10),
        word("Second", 10, 40),
        word("far", 600, 10),
    ]

    lines = [[w.text for w in line] for line in group_lines(words)]

    assert lines == [["Hello", "world"], ["far"], ["Second"]]


def test_ocr_only_build():
    words = [word("Save", 850, 900), word("Welcome", 100, 50), word("back", 145, 50)]

    screen = ScreenStateBuilder().build([], words, WINDOW, DIMENSIONS, timestamp=42)

    assert screen.detection_method == "ocr-only"
    assert screen.timestamp == 42
    by_text = {node.text: node for node in screen.nodes}
    assert set(by_text) == {"Save", "Welcome back"}
    assert by_text["Save"].type == "button"
    assert by_text["Save"].clickable is True
    assert by_text["Welcome back"].type == "text"
    assert all(node.screen_state_id == screen.id for node in screen.nodes)


def test_words_are_merged_into_containing_detection():
    detections = [
        DetectedElement("input", BoundingBox(100, 100, 400, 140), 0.8, source="owlv2"),
    ]
    words = [word("Search", 110, 110), word("files", 160, 110), word("Outside", 600, 600)]

    screen = ScreenStateBuilder().build(detections, words, WINDOW, DIMENSIONS, detection_method="owlv2")

    assert screen.detection_method == "owlv2"
    field = next(node for node in screen.nodes if node.type == "input")
    assert field.text == "Search files"
    assert field.interactive is True
    assert field.metadata.detection_source == "owlv2"
    assert any(node.text == "Outside" for node in screen.nodes)


def test_container_with_members_becomes_subtree():
    detections = [
        DetectedElement("dialog", BoundingBox(200, 200, 800, 800), 0.9),
        DetectedElement("button", BoundingBox(600, 700, 700, 740), 0.8, text="OK"),
        DetectedElement("button", BoundingBox(450, 700, 550, 740), 0.8, text="Cancel"),
    ]
    words = [word("Unsaved changes", 300, 250, width=200)]

    screen = ScreenStateBuilder().build(detections, words, WINDOW, DIMENSIONS)

    assert len(screen.subtrees) == 1
    subtree = screen.subtrees[0]
    dialog = next(node for node in screen.nodes if node.type == "dialog")
    assert subtree.type == "dialog"
    assert subtree.root_node_id == dialog.id
    assert subtree.title == "Unsaved changes"
    members = [node for node in screen.nodes if node.id in subtree.node_ids]
    assert {node.text for node in members} == {"OK", "Cancel"}
    assert all(node.parent_id == subtree.id for node in members)
    assert dialog.parent_id is None


def test_descriptions_name_role_text_region_and_app():
    detections = [DetectedElement("button", BoundingBox(850, 900, 950, 940), 0.9, text="Save")]

    screen = ScreenStateBuilder().build(detections, [], WINDOW, DIMENSIONS)

    button = screen.nodes[0]
    assert button.description == 'Button "Save" in bottom-right on Notes at example.com (clickable)'
    assert screen.description.startswith('Notes window showing "Draft" at example.com')
    assert 'including "Save"' in screen.description


def test_subtree_description_counts_members():
    detections = [
        DetectedElement("form", BoundingBox(0, 0, 500, 500), 0.9),
        DetectedElement("input", BoundingBox(10, 10, 200, 40), 0.8, text="Email"),
        DetectedElement("input", BoundingBox(10, 60, 200, 90), 0.8, text="Password"),
        DetectedElement("button", BoundingBox(10, 120, 100, 150), 0.8, text="Login"),
    ]

    screen = ScreenStateBuilder().build(detections, [], WINDOW, DIMENSIONS)

    description = screen.subtrees[0].description
    assert description.startswith("Form containing")
    assert "2 input fields" in description
    assert "1 button" in description
    assert description.endswith("in Notes")


def test_text_lines_typed_by_content():
    words = [
        word("Search...", 10, 10, width=80),
        word("https://example.com", 10, 300, width=160),
        word("Cancel", 600, 600),
        word("Quarterly", 10, 800, width=80),
    ]

    screen = ScreenStateBuilder().build([], words, WINDOW, DIMENSIONS)

    types = {node.text: node.type for node in screen.nodes}
    assert types == {
        "Search...": "input",
        "https://example.com": "link",
        "Cancel": "button",
        "Quarterly": "text",
    }
