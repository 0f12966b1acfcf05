import uuid

from shared.helper.vector_ids import VECTOR_ID_NAMESPACE, make_vector_id


class TestMakeVectorId:
    def test_same_input_yields_same_id(self):
        assert make_vector_id("6751a2f0c8e4b1a2d3e4f5a6") == make_vector_id("6751a2f0c8e4b1a2d3e4f5a6")

    def test_distinct_inputs_do_not_collide(self):
        ids = {make_vector_id(f"report-{i}") for i in range(2000)}
        assert len(ids) == 2000

    def test_is_uuid5_in_fixed_namespace(self):
        vector_id = make_vector_id("faq-1")
        assert uuid.UUID(vector_id).version == 5
        assert vector_id == str(uuid.uuid5(VECTOR_ID_NAMESPACE, "faq-1"))

    def test_non_string_ids_are_stringified(self):
        assert make_vector_id(42) == make_vector_id("42")
