from copyflow.integrations.clickup import TaskFieldIndex
from copyflow.integrations.content_generation import GeneratedContent, parse_titles


def test_lookup_is_case_insensitive_and_first_match_wins():
    index = TaskFieldIndex([
        {'id': '1', 'name': 'Shade Asset ID', 'value': 'first'},
        {'id': '2', 'name': 'shade asset id', 'value': 'second'},
    ])

    assert len(index) == 1
    assert 'SHADE ASSET ID' in index
    assert index.get('shade Asset id').id == '1'
    assert index.text('Shade Asset ID') == 'first'


def test_missing_field_and_malformed_entries():
    index = TaskFieldIndex([None, {'id': '9'}, {'id': '3', 'name': 'Client ID (Supabase)', 'value': None}])

    assert index.get('Generated Copy') is None
    assert index.text('Generated Copy') is None
    assert index.text('Client ID (Supabase)') is None
    assert not index.is_checked('Generate Social Copy')


def test_checkbox_values():
    index = TaskFieldIndex([
        {'id': 'a', 'name': 'Generate Social Copy', 'type': 'checkbox', 'value': 'true'},
        {'id': 'b', 'name': 'Bool Field', 'type': 'checkbox', 'value': True},
        {'id': 'c', 'name': 'Off Field', 'type': 'checkbox', 'value': 'false'},
    ])

    assert index.is_checked('generate social copy')
    assert index.is_checked('Bool Field')
    assert not index.is_checked('Off Field')


def test_dropdown_and_numeric_text():
    index = TaskFieldIndex([
        {
            'id': 'd',
            'name': 'Client ID (Supabase)',
            'type': 'drop_down',
            'value': 1,
            'type_config': {'options': [{'name': 'client-a', 'orderindex': 0}, {'name': 'client-b', 'orderindex': 1}]},
        },
        {'id': 'n', 'name': 'Episode', 'type': 'number', 'value': 12},
    ])

    assert index.text('Client ID (Supabase)') == 'client-b'
    assert index.text('Episode') == '12'


def test_generated_content_parses_json_encoded_titles():
    generated = GeneratedContent.from_response({
        'id': 'gen1',
        'social_copy': 'copy',
        'youtube_titles': '["One", "Two"]',
        'duplicate': True,
    })

    assert generated.youtube_titles == ['One', 'Two']
    assert generated.duplicate is True
    assert parse_titles('not json') == []
    assert parse_titles(['A', '', 'B']) == ['A', 'B']
