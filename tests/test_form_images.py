# tests/test_form_images.py
"""
Tests for form_images.py - Quiz form assembly and image resolution
"""
import pytest

from ccbridge.errors import FormBuildError, ServiceAPIError
from ccbridge.form_images import SCRIPT_FUNCTION, TEMP_TITLE_PREFIX, FormImageResolver, QuizFormBuilder
from ccbridge.models import ChoiceOption, QuestionImage, QuestionItemDef, QuestionType, StandaloneImageDef


def image_question(uri, title="What is shown?"):
    return QuestionItemDef(
        title=title,
        question_type=QuestionType.RADIO,
        choices=[ChoiceOption("a", "A cat"), ChoiceOption("b", "A dog")],
        correct_answers=["A cat"],
        point_value=1,
        image=QuestionImage(alt_text="Animal", source_uri=uri),
    )


def form_items(forms, form_id="form1"):
    return forms.forms[form_id]


class TestImageResolution:
    """Tests for the placeholder / validate / substitute passes"""

    def test_processed_uri_is_used(self, fake_forms):
        result = QuizFormBuilder(fake_forms).build("Quiz", [image_question("https://example.com/cat.png")])

        items = form_items(fake_forms, result["formId"])
        assert len(items) == 1
        uri = items[0]["questionItem"]["image"]["sourceUri"]
        assert uri.startswith("https://lh7-rt.googleusercontent.com/")
        assert result["result"]["errors"] == []

    def test_insecure_processed_uri_falls_back_to_original(self, forms_factory):
        forms = forms_factory(processed_uri=lambda source: "http://insecure.example/img")

        result = QuizFormBuilder(forms).build("Quiz", [image_question("https://example.com/cat.png")])

        items = form_items(forms, result["formId"])
        assert [i["title"] for i in items] == ["What is shown?"]
        assert items[0]["questionItem"]["image"]["sourceUri"] == "https://example.com/cat.png"
        assert result["result"]["success"] is True

    def test_placeholders_are_deleted(self, fake_forms):
        result = QuizFormBuilder(fake_forms).build(
            "Quiz", [image_question("https://example.com/1.png", "One"), image_question("https://example.com/2.png", "Two")]
        )

        titles = [i["title"] for i in form_items(fake_forms, result["formId"])]
        assert titles == ["One", "Two"]
        assert not any(t.startswith(TEMP_TITLE_PREFIX) for t in titles)

    def test_no_secure_uri_removes_question_image(self, forms_factory):
        forms = forms_factory(processed_uri=lambda source: None)

        result = QuizFormBuilder(forms).build("Quiz", [image_question("http://example.com/cat.png")])

        items = form_items(forms, result["formId"])
        assert len(items) == 1
        assert "image" not in items[0]["questionItem"]
        assert len(result["result"]["errors"]) == 1

    def test_no_secure_uri_drops_standalone_image(self, forms_factory):
        forms = forms_factory(processed_uri=lambda source: None)
        definitions = [
            StandaloneImageDef(title="Figure", image=QuestionImage(source_uri="http://example.com/fig.png")),
            image_question("https://example.com/ok.png", "Kept"),
        ]

        result = QuizFormBuilder(forms).build("Quiz", definitions)

        items = form_items(forms, result["formId"])
        assert [i["title"] for i in items] == ["Kept"]
        assert result["result"]["created_items"] == 1

    def test_placeholder_failure_costs_only_the_image(self, forms_factory):
        forms = forms_factory(fail_placeholders=True)

        result = QuizFormBuilder(forms).build("Quiz", [image_question("https://example.com/cat.png")])

        items = form_items(forms, result["formId"])
        assert len(items) == 1
        assert items[0]["questionItem"]["image"]["sourceUri"] == "https://example.com/cat.png"
        assert any("Temp image creation failed" in e for e in result["result"]["errors"])

    def test_requests_without_images_skip_placeholders(self, fake_forms):
        question = image_question(None)
        question.image = None

        QuizFormBuilder(fake_forms).build("Quiz", [question])

        assert len(fake_forms.batches) == 1


class TestSubmission:
    """Tests for the final submission"""

    def test_build_returns_form_info(self, fake_forms):
        result = QuizFormBuilder(fake_forms).build("Unit Quiz", [])

        assert result["formId"] == "form1"
        assert result["formUrl"] == "https://docs.google.com/forms/d/form1/viewform"
        assert result["title"] == "Unit Quiz"
        assert result["result"]["created_items"] == 0

    def test_script_side_channel(self, fake_forms, mocker):
        script = mocker.Mock()
        script.run.return_value = {"success": True, "createdItems": 1}
        question = image_question(None)
        question.image = None

        result = QuizFormBuilder(fake_forms, script).build("Quiz", [question])

        function, parameters = script.run.call_args.args
        assert function == SCRIPT_FUNCTION
        assert parameters[0] == result["formId"]
        assert parameters[1][0]["createItem"]["item"]["title"] == "What is shown?"
        assert result["result"]["created_items"] == 1
        assert fake_forms.batches == []

    def test_failed_submission_raises(self, fake_forms, mocker):
        script = mocker.Mock()
        script.run.side_effect = ServiceAPIError("script failed")
        question = image_question(None)
        question.image = None

        with pytest.raises(FormBuildError):
            QuizFormBuilder(fake_forms, script).build("Quiz", [question])

    def test_script_reported_failure_raises(self, fake_forms, mocker):
        script = mocker.Mock()
        script.run.return_value = {"success": False, "createdItems": 0, "message": "batchUpdate failed"}
        question = image_question(None)
        question.image = None

        with pytest.raises(FormBuildError) as exc_info:
            QuizFormBuilder(fake_forms, script).build("Quiz", [question])

        assert "batchUpdate failed" in exc_info.value.message

    def test_unexpected_script_result_raises(self, fake_forms, mocker):
        script = mocker.Mock()
        script.run.return_value = "ok"
        question = image_question(None)
        question.image = None

        with pytest.raises(FormBuildError):
            QuizFormBuilder(fake_forms, script).build("Quiz", [question])

    def test_input_requests_not_mutated(self, fake_forms):
        resolver = FormImageResolver(fake_forms)
        form_id = fake_forms.create_form("Quiz")["formId"]
        requests_ = [{
            "createItem": {
                "item": {"title": "Q", "imageItem": {"image": {"sourceUri": "https://example.com/a.png"}}},
                "location": {"index": 0},
            }
        }]

        resolver.resolve_and_submit(form_id, requests_)

        assert requests_[0]["createItem"]["item"]["imageItem"]["image"]["sourceUri"] == "https://example.com/a.png"
