# tests/test_manifest.py
"""
Tests for manifest.py - Manifest walking and the conversion entry point
"""
import pytest

from ccbridge import manifest as manifest_module
from ccbridge.errors import ManifestError
from ccbridge.manifest import (
    DEFAULT_COURSE_NAME,
    DEFAULT_TOPIC_NAME,
    convert_package,
    sanitize_topic_name,
)
from ccbridge.models import WorkType
from ccbridge.package import make_package_file


PDF_BYTES = b"%PDF-1.4 fake"


class TestWeekOneScenario:
    """An HTML page with a local image inside a 'Week 1' folder"""

    def test_single_assignment(self, week_one_package):
        converter = convert_package(week_one_package)
        items = list(converter)

        assert len(items) == 1
        item = items[0]
        assert item.topic == "Week 1"
        assert item.title == "Intro"
        assert item.work_type == WorkType.ASSIGNMENT
        assert converter.skip_log == []

    def test_image_becomes_attachment(self, week_one_package):
        item = list(convert_package(week_one_package))[0]

        assert len(item.attachments) == 1
        assert item.attachments[0].source_file.name == "img/a.png"
        assert item.attachments[0].target_name == "a.png"

    def test_display_html_has_placeholder(self, week_one_package):
        """The image should be replaced by a placeholder span"""
        item = list(convert_package(week_one_package))[0]

        assert "<img" not in item.display_html
        assert 'data-attachment="a.png"' in item.display_html
        assert "[Image: Diagram - will be attached separately]" in item.display_html
        assert item.rich is True
        assert item.plain_text_summary.startswith("Hello")

    def test_course_name_from_metadata(self, week_one_package):
        assert convert_package(week_one_package).course_name == "Biology 101"


class TestManifestErrors:
    """Tests for missing and broken manifests"""

    def test_missing_manifest(self):
        files = [make_package_file("notes.txt", b"hello")]
        with pytest.raises(ManifestError) as exc_info:
            convert_package(files)
        assert "imsmanifest.xml not found" in exc_info.value.message

    def test_unparseable_manifest(self, package_builder):
        with pytest.raises(ManifestError) as exc_info:
            convert_package(package_builder("<manifest><resources>"))
        assert exc_info.value.cause is not None

    def test_manifest_found_case_insensitively(self, manifest_builder):
        files = [make_package_file("IMSManifest.XML", manifest_builder().encode("utf-8"))]
        assert list(convert_package(files)) == []

    def test_empty_organization_yields_nothing(self, package_builder, manifest_builder):
        """An organization without items is empty output, not an error"""
        converter = convert_package(package_builder(manifest_builder("", "")))
        assert list(converter) == []
        assert converter.skip_log == []

    def test_no_organizations_and_no_resources(self, package_builder, manifest_builder):
        converter = convert_package(package_builder(manifest_builder(None, "")))
        assert list(converter) == []

    def test_default_course_name(self, package_builder, manifest_builder):
        converter = convert_package(package_builder(manifest_builder("", "", course_title=None)))
        assert converter.course_name == DEFAULT_COURSE_NAME


class TestWalker:
    """Tests for traversal order, topics and the skip log"""

    def test_pre_order_and_topics(self, package_builder, manifest_builder):
        """A referencing container comes before its children, which get its title as topic"""
        organization = (
            '<item identifier="A" identifierref="R1"><title>Unit 1</title>'
            '<item identifier="B" identifierref="R2"><title>Reading</title></item>'
            '</item>'
            '<item identifier="C" identifierref="R3"><title>Final</title></item>'
        )
        resources = (
            '<resource identifier="R1" type="webcontent" href="u1.pdf"><file href="u1.pdf"/></resource>'
            '<resource identifier="R2" type="webcontent" href="reading.pdf"><file href="reading.pdf"/></resource>'
            '<resource identifier="R3" type="webcontent" href="final.pdf"><file href="final.pdf"/></resource>'
        )
        files = {"u1.pdf": PDF_BYTES, "reading.pdf": PDF_BYTES, "final.pdf": PDF_BYTES}
        items = list(convert_package(package_builder(manifest_builder(organization, resources), files)))

        assert [i.id for i in items] == ["A", "B", "C"]
        assert [i.topic for i in items] == [None, "Unit 1", None]

    def test_items_plus_skips_cover_every_reference(self, package_builder, manifest_builder):
        organization = (
            '<item identifier="F"><title>Week 2</title>'
            '<item identifier="I1" identifierref="R1"><title>Syllabus</title></item>'
            '<item identifier="I2" identifierref="MISSING"><title>Ghost</title></item>'
            '<item identifier="I3" identifierref="R3"><title>Empty</title></item>'
            '</item>'
        )
        resources = (
            '<resource identifier="R1" type="webcontent" href="syllabus.pdf"><file href="syllabus.pdf"/></resource>'
            '<resource identifier="R3" type="webcontent"/>'
        )
        converter = convert_package(
            package_builder(manifest_builder(organization, resources), {"syllabus.pdf": PDF_BYTES})
        )
        items = list(converter)

        assert len(items) + len(converter.skip_log) == 3
        assert [i.title for i in items] == ["Syllabus"]
        reasons = {s.id: s.reason for s in converter.skip_log}
        assert reasons["I2"] == "Resource not found for ref: MISSING"
        assert reasons["I3"].startswith("Unhandled resource type")

    def test_failing_parent_keeps_its_children(self, package_builder, manifest_builder, mocker):
        organization = (
            '<item identifier="A" identifierref="R1"><title>Unit 1</title>'
            '<item identifier="B" identifierref="R2"><title>Reading</title></item>'
            '<item identifier="C" identifierref="R3"><title>Worksheet</title></item>'
            '</item>'
        )
        resources = (
            '<resource identifier="R1" type="webcontent" href="u1.pdf"><file href="u1.pdf"/></resource>'
            '<resource identifier="R2" type="webcontent" href="reading.pdf"><file href="reading.pdf"/></resource>'
            '<resource identifier="R3" type="webcontent" href="sheet.pdf"><file href="sheet.pdf"/></resource>'
        )
        files = {"u1.pdf": PDF_BYTES, "reading.pdf": PDF_BYTES, "sheet.pdf": PDF_BYTES}
        real_classify = manifest_module.classify_resource

        def classify(resource, *args):
            if resource.identifier == "R1":
                raise ValueError("broken resource")
            return real_classify(resource, *args)

        mocker.patch.object(manifest_module, "classify_resource", side_effect=classify)
        converter = convert_package(package_builder(manifest_builder(organization, resources), files))
        items = list(converter)

        assert [i.id for i in items] == ["B", "C"]
        assert [i.topic for i in items] == ["Unit 1", "Unit 1"]
        [skip] = converter.skip_log
        assert skip.id == "A"
        assert skip.reason == "Error during item processing: broken resource"
        assert len(items) + len(converter.skip_log) == 3

    def test_leaf_without_reference_is_skipped(self, package_builder, manifest_builder):
        organization = '<item identifier="X"><title>Label</title></item>'
        converter = convert_package(package_builder(manifest_builder(organization, "")))

        assert list(converter) == []
        assert converter.skip_log[0].title == "Label"

    def test_conversion_is_lazy(self, week_one_package):
        """Nothing is classified before iteration starts"""
        converter = convert_package(week_one_package)
        assert converter.item_count == 0

        iterator = iter(converter)
        next(iterator)
        assert converter.item_count == 1

    def test_resource_title_wins_over_item_title(self, package_builder, manifest_builder):
        organization = '<item identifier="I1" identifierref="R1"><title>Item title</title></item>'
        resources = (
            '<resource identifier="R1" type="webcontent" href="a.pdf">'
            '<metadata><lom:lom><lom:general><lom:title><lom:string>Resource title</lom:string>'
            '</lom:title></lom:general></lom:lom></metadata>'
            '<file href="a.pdf"/></resource>'
        )
        items = list(convert_package(package_builder(manifest_builder(organization, resources), {"a.pdf": PDF_BYTES})))
        assert items[0].title == "Resource title"

    def test_duplicate_resource_ids_first_wins(self, package_builder, manifest_builder):
        organization = '<item identifier="I1" identifierref="R1"><title>Doc</title></item>'
        resources = (
            '<resource identifier="R1" type="webcontent" href="first.pdf"><file href="first.pdf"/></resource>'
            '<resource identifier="R1" type="webcontent" href="second.pdf"><file href="second.pdf"/></resource>'
        )
        files = {"first.pdf": PDF_BYTES, "second.pdf": PDF_BYTES}
        items = list(convert_package(package_builder(manifest_builder(organization, resources), files)))
        assert items[0].attachments[0].source_file.name == "first.pdf"


class TestFlatResources:
    """Without an organization every resource is a top-level item"""

    def test_resources_become_items(self, package_builder, manifest_builder):
        resources = (
            '<resource identifier="R1" type="webcontent" href="a.pdf" title="Handout"><file href="a.pdf"/></resource>'
            '<resource identifier="R2" type="webcontent" href="b.pdf"><file href="b.pdf"/></resource>'
        )
        files = {"a.pdf": PDF_BYTES, "b.pdf": PDF_BYTES}
        items = list(convert_package(package_builder(manifest_builder(None, resources), files)))

        assert [i.id for i in items] == ["R1", "R2"]
        assert items[0].title == "Handout"
        assert items[1].title == "Untitled Resource"
        assert all(i.topic is None for i in items)
        assert all(i.work_type == WorkType.MATERIAL for i in items)

    def test_xml_base_is_applied(self, package_builder, manifest_builder):
        resources = (
            '<resource identifier="R1" type="webcontent" href="a.pdf" xml:base="files/"><file href="a.pdf"/></resource>'
        )
        items = list(convert_package(package_builder(manifest_builder(None, resources), {"files/a.pdf": PDF_BYTES})))
        assert items[0].attachments[0].source_file.name == "files/a.pdf"


class TestSanitizeTopicName:
    """Tests for topic name sanitizing"""

    def test_replaces_slash_and_ampersand(self):
        assert sanitize_topic_name("Unit 1/Part 2 & More!") == "Unit 1-Part 2 and More"

    def test_empty_falls_back(self):
        assert sanitize_topic_name(None) == DEFAULT_TOPIC_NAME
        assert sanitize_topic_name("!!!") == DEFAULT_TOPIC_NAME

    def test_truncates_long_names(self):
        result = sanitize_topic_name("x" * 150)
        assert len(result) == 100
        assert result.endswith("...")
