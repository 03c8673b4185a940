from ai_router.llm.features import ContentFeature, detect_features


class TestDetectFeatures:
    def test_plain_text_has_no_features(self):
        assert detect_features("hello there") == frozenset()

    def test_code_is_case_sensitive(self):
        assert ContentFeature.CODE in detect_features("import os\nprint(os.getcwd())")
        assert ContentFeature.CODE not in detect_features("IMPORT duties on steel")

    def test_code_fence(self):
        assert ContentFeature.CODE in detect_features("```\nx = 1\n```")

    def test_keyword_features_ignore_case(self):
        features = detect_features("Write a POEM, then Analyze it")
        assert ContentFeature.CREATIVE in features
        assert ContentFeature.ANALYTICAL in features

    def test_realtime(self):
        assert ContentFeature.REALTIME in detect_features("What is the latest news?")

    def test_length_features(self):
        assert ContentFeature.LONG_CONTEXT not in detect_features("x" * 10_000)
        long_features = detect_features("x" * 10_001)
        assert ContentFeature.LONG_CONTEXT in long_features
        assert ContentFeature.VERY_LONG_CONTEXT not in long_features
        very_long = detect_features("x" * 100_001)
        assert {ContentFeature.LONG_CONTEXT, ContentFeature.VERY_LONG_CONTEXT} <= very_long
