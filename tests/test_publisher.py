# tests/test_publisher.py
"""
Tests for publisher.py - Artifact stage over fake Google services
"""
import time

from ccbridge.errors import ServiceAPIError
from ccbridge.google_client import FOLDER_MIME
from ccbridge.manifest import convert_package
from ccbridge.models import (
    ChoiceOption,
    ContentItem,
    PendingUpload,
    QuestionImage,
    QuestionItemDef,
    QuestionType,
    WorkType,
)
from ccbridge.package import make_package_file
from ccbridge.publisher import ArtifactPublisher, question_uploads, substitute_links


def uploaded(target_name, file_id="f1"):
    upload = PendingUpload(make_package_file(f"files/{target_name}", b"data"), target_name)
    upload.drive_file = {"id": file_id, "webViewLink": f"https://drive.example/{file_id}"}
    return upload


def quiz_item(image_upload=None):
    question = QuestionItemDef(
        title="What is 2 + 2?",
        question_type=QuestionType.RADIO,
        choices=[ChoiceOption("a", "3"), ChoiceOption("b", "4")],
        correct_answers=["4"],
        point_value=1,
    )
    if image_upload is not None:
        question.image = QuestionImage(alt_text="Sum", upload=image_upload)
    return ContentItem(
        id="Q1",
        title="Quiz 1",
        work_type=WorkType.ASSIGNMENT,
        topic="Week 2",
        qti_file=make_package_file("quiz/q.xml", b"<questestinterop/>"),
        assessment_questions=[question],
    )


class TestSubstituteLinks:
    """Tests for substitute_links"""

    def test_attachment_span_becomes_link(self):
        display = '<p>See <span data-attachment="notes.pdf">notes [Attached File: notes.pdf]</span></p>'

        result = substitute_links(display, [uploaded("notes.pdf")])

        assert '<a href="https://drive.example/f1" target="_blank">notes [Attached File: notes.pdf]</a>' in result
        assert "data-attachment" not in result

    def test_video_placeholder_becomes_link(self):
        display = (
            '<span class="imscc-video-placeholder-text">'
            '[VIDEO_PLACEHOLDER REF_NAME="media/clip.mp4" DISPLAY_TITLE="Lecture"]</span>'
        )

        result = substitute_links(display, [uploaded("clip.mp4", "v1")])

        assert 'href="https://drive.example/v1"' in result
        assert "Watch video: Lecture" in result
        assert "VIDEO_PLACEHOLDER" not in result

    def test_placeholder_without_upload_stays(self):
        display = '<span data-attachment="notes.pdf">notes</span>'
        pending = PendingUpload(make_package_file("files/notes.pdf", b"x"), "notes.pdf")

        assert substitute_links(display, [pending]) == display

    def test_matching_ignores_case(self):
        display = '<span data-attachment="Notes.PDF">notes</span>'
        assert "drive.example/f1" in substitute_links(display, [uploaded("notes.pdf")])

    def test_empty_html(self):
        assert substitute_links(None, [uploaded("a.pdf")]) is None
        assert substitute_links("", [uploaded("a.pdf")]) == ""


class TestPublishItem:
    """Tests for the per-item stages"""

    def test_html_page_end_to_end(self, week_one_package, google_services):
        converter = convert_package(week_one_package)
        publisher = ArtifactPublisher(google_services, converter.course_name)

        [item] = list(publisher.publish(converter))

        assert item.processing_error is None
        folders = {f["name"] for f in google_services.drive.files.values() if f["mimeType"] == FOLDER_MIME}
        assert folders == {"LMS Import", "Biology 101", "Week 1", "Intro"}

        image, doc = item.materials
        assert (image.kind, image.title) == ("drive_file", "a.png")
        assert image.url.startswith("https://drive.example/")
        assert f'href="{image.url}"' in item.display_html
        assert doc.kind == "drive_file"
        assert google_services.docs.created == ["Intro"]

    def test_rerun_creates_nothing_new(self, week_one_package, google_services):
        drive = google_services.drive
        first = convert_package(week_one_package)
        list(ArtifactPublisher(google_services, first.course_name).publish(first))
        folders_before = drive.count("create_folder")
        uploads_before = drive.count("upload_file")

        second = convert_package(week_one_package)
        [item] = list(ArtifactPublisher(google_services, second.course_name).publish(second))

        assert drive.count("create_folder") == folders_before
        assert drive.count("upload_file") == uploads_before
        assert len(item.materials) == 2

    def test_quiz_creates_form(self, google_services):
        item = next(ArtifactPublisher(google_services, "Course").publish([quiz_item()]))

        assert item.processing_error is None
        [form] = item.materials
        assert form.kind == "form"
        assert form.url == "https://docs.google.com/forms/d/form1/viewform"
        assert google_services.docs.created == []
        assert len(google_services.forms.forms["form1"]) == 1

    def test_question_images_are_uploaded(self, google_services):
        upload = PendingUpload(make_package_file("quiz/img/sum.png", b"\x89PNG"), "sum.png")

        item = next(ArtifactPublisher(google_services, "Course").publish([quiz_item(upload)]))

        assert item.processing_error is None
        assert upload.drive_file is not None
        assert question_uploads(item) == [upload]
        [form_item] = google_services.forms.forms["form1"]
        assert "image" in form_item["questionItem"]

    def test_material_without_rich_html_gets_no_document(self, google_services):
        item = ContentItem(
            id="L1", title="Syllabus link", work_type=WorkType.MATERIAL, plain_text_summary="Link: Syllabus"
        )

        published = next(ArtifactPublisher(google_services, "Course").publish([item]))

        assert published.materials == []
        assert google_services.docs.created == []

    def test_stage_failure_is_recorded(self, google_services, mocker):
        mocker.patch.object(
            google_services.drive, "upload_file", side_effect=ServiceAPIError("storage quota exceeded", status_code=403)
        )
        failing = ContentItem(id="A", title="Handout", work_type=WorkType.MATERIAL)
        failing.add_attachment(make_package_file("files/handout.pdf", b"%PDF"))
        healthy = ContentItem(id="B", title="Reading", work_type=WorkType.MATERIAL, plain_text_summary="Read")

        results = list(ArtifactPublisher(google_services, "Course").publish([failing, healthy]))

        assert [r.id for r in results] == ["A", "B"]
        assert results[0].processing_error.stage == "uploads"
        assert "storage quota exceeded" in results[0].processing_error.message
        assert results[1].processing_error is None

    def test_unexpected_error_stays_with_its_item(self, google_services, mocker):
        mocker.patch.object(google_services.drive, "upload_file", side_effect=KeyError("id"))
        failing = ContentItem(id="A", title="Handout", work_type=WorkType.MATERIAL)
        failing.add_attachment(make_package_file("files/handout.pdf", b"%PDF"))
        healthy = ContentItem(id="B", title="Reading", work_type=WorkType.MATERIAL, plain_text_summary="Read")

        results = list(ArtifactPublisher(google_services, "Course").publish([failing, healthy]))

        assert [r.id for r in results] == ["A", "B"]
        assert results[0].processing_error.stage == "uploads"
        assert "KeyError" in results[0].processing_error.message
        assert results[1].processing_error is None

    def test_same_base_name_files_stay_distinct(self, google_services, package_builder, manifest_builder):
        organization = '<item identifier="root"><item identifier="I1" identifierref="R1"><title>Diagrams</title></item></item>'
        resources = (
            '<resource identifier="R1" type="webcontent" href="wiki/page.html">'
            '<file href="wiki/page.html"/></resource>'
        )
        files = {
            "wiki/page.html": '<img src="../week1/diagram.png" alt="One"><img src="../week2/diagram.png" alt="Two">',
            "week1/diagram.png": b"\x89PNG one",
            "week2/diagram.png": b"\x89PNG two",
        }
        converter = convert_package(package_builder(manifest_builder(organization, resources), files))

        [item] = list(ArtifactPublisher(google_services, converter.course_name).publish(converter))

        assert item.processing_error is None
        assert [a.target_name for a in item.attachments] == ["diagram.png", "diagram (2).png"]
        first, second = (a.drive_file for a in item.attachments)
        assert first["id"] != second["id"]
        assert f'href="{first["webViewLink"]}"' in item.display_html
        assert f'href="{second["webViewLink"]}"' in item.display_html


class TestPublishOrdering:
    """Tests for concurrent publishing"""

    def test_output_keeps_input_order(self, google_services):
        class SlowFirstPublisher(ArtifactPublisher):
            def publish_item(self, item):
                time.sleep(0.01 * (10 - int(item.id)))
                return item

        items = [ContentItem(id=str(n), title=f"Item {n}", work_type=WorkType.MATERIAL) for n in range(10)]
        publisher = SlowFirstPublisher(google_services, "Course", max_workers=4)

        assert [i.id for i in publisher.publish(items)] == [str(n) for n in range(10)]

    def test_consumes_input_lazily(self, google_services):
        seen = []

        def source():
            for n in range(20):
                seen.append(n)
                yield ContentItem(id=str(n), title=f"Item {n}", work_type=WorkType.MATERIAL)

        publisher = ArtifactPublisher(google_services, "Course", max_workers=2)
        results = publisher.publish(source())
        next(results)

        assert len(seen) < 20
        results.close()
