from entities import decode, decode_entities, named_to_numeric, sanitize_text, strip_cdata


def test_double_encoded_entities_decode_one_level():
    assert decode_entities("&amp;lt;b&amp;gt;") == "&lt;b&gt;"
    assert decode_entities("&amp;amp;") == "&amp;"


def test_named_and_numeric_references():
    assert decode_entities("caf&eacute; &#8226; &#x2022; &hellip;") == "café • • …"


def test_unknown_and_invalid_references_are_left_alone():
    assert decode_entities("&notanentity; &#0; &#xD800;") == "&notanentity; &#0; &#xD800;"


def test_decode_strips_cdata_and_collapses_whitespace():
    assert decode("  <![CDATA[Hello\n   &amp;  world]]>  ") == "Hello & world"


def test_strip_cdata_tolerates_unterminated_section():
    assert strip_cdata("<![CDATA[open ended") == "open ended"


def test_sanitize_text_removes_tags():
    assert sanitize_text("<p>One <b>two</b></p>") == "One two"


def test_named_to_numeric_keeps_xml_entities():
    assert named_to_numeric("&amp; &lt; &nbsp;") == "&amp; &lt; &#160;"
    assert named_to_numeric("&bogus;") == "&amp;bogus;"
