import pytest
import responses

from astranodes.errors import ApiError
from astranodes.plugins import CURSEFORGE_API, MODRINTH_API, PluginInstaller, download, sanitize_filename

JAR = b'PK\x03\x04fake-jar'


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def installer(wings):
    return PluginInstaller(wings, curseforge_key='cf-key')


def versions(*entries):
    return [{'id': vid, 'version_number': num, 'loaders': loaders,
             'files': [{'url': f'https://cdn.modrinth.com/data/x/{num}.jar', 'filename': f'Thing-{num}.jar',
                        'primary': True}]}
            for vid, num, loaders in entries]


@pytest.mark.parametrize('name, expected', [
    ('EssentialsX.jar', 'EssentialsX.jar'),
    ('../../etc/passwd', 'passwd'),
    ('plugins\\Thing.jar', 'Thing.jar'),
])
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected


@pytest.mark.parametrize('name', ['', '.hidden', 'a/..'])
def test_sanitize_filename_rejects(name):
    with pytest.raises(ApiError):
        sanitize_filename(name)


@pytest.mark.parametrize('url', ['http://cdn.modrinth.com/x.jar', 'https://evil.example/x.jar', None])
def test_download_only_from_trusted_hosts(url):
    with pytest.raises(ApiError):
        download(url)


def test_download_size_limit(rsps):
    rsps.add(responses.GET, 'https://cdn.modrinth.com/big.jar', body=b'x' * 100)
    with pytest.raises(ApiError) as exc:
        download('https://cdn.modrinth.com/big.jar', limit=10)
    assert 'limit' in exc.value.message


def test_modrinth_install_prefers_matching_loader(installer, wings, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/project/thing/version',
             json=versions(('v3', '3.0', ['fabric']), ('v2', '2.0', ['paper'])))
    rsps.add(responses.GET, 'https://cdn.modrinth.com/data/x/2.0.jar', body=JAR)

    result = installer.install('uuid-1', 1, source='modrinth', slug='thing')
    assert result['version'] == '2.0'
    assert result['filename'] == 'Thing-2.0.jar'
    assert wings.called('upload_file') == [('upload_file', 'uuid-1', '/plugins/Thing-2.0.jar', JAR)]
    assert wings.called('create_directory') == [('create_directory', 'uuid-1', '/', 'plugins')]


def test_modrinth_install_specific_version(installer, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/project/thing/version',
             json=versions(('v3', '3.0', ['paper']), ('v2', '2.0', ['paper'])))
    with pytest.raises(ApiError) as exc:
        installer.install('uuid-1', 1, source='modrinth', slug='thing', version_id='v9')
    assert exc.value.status_code == 404


def test_datapacks_go_into_the_world(installer, wings, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/project/pack/version', json=versions(('v1', '1.0', ['datapack'])))
    rsps.add(responses.GET, 'https://cdn.modrinth.com/data/x/1.0.jar', body=JAR)
    installer.install('uuid-1', 1, source='modrinth', slug='pack', type_='datapack')
    assert [c[3] for c in wings.called('create_directory')] == ['world', 'datapacks']
    assert wings.called('upload_file')[0][2] == '/world/datapacks/Thing-1.0.jar'


def test_existing_directory_is_not_an_error(installer, wings, rsps):
    wings.failing.add('create_directory')
    rsps.add(responses.GET, f'{MODRINTH_API}/project/thing/version', json=versions(('v1', '1.0', ['paper'])))
    rsps.add(responses.GET, 'https://cdn.modrinth.com/data/x/1.0.jar', body=JAR)
    assert installer.install('uuid-1', 1, source='modrinth', slug='thing')['success'] is True


def test_source_outage_is_502(installer, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/project/thing/version', status=503)
    with pytest.raises(ApiError) as exc:
        installer.install('uuid-1', 1, source='modrinth', slug='thing')
    assert exc.value.status_code == 502


def test_curseforge_install_derives_cdn_url(installer, wings, rsps):
    rsps.add(responses.GET, f'{CURSEFORGE_API}/mods/123/files/4567890', json={'data': {
        'id': 4567890, 'fileName': 'cool-mod.jar', 'displayName': 'Cool Mod 1.0', 'downloadUrl': None}})
    rsps.add(responses.GET, 'https://edge.forgecdn.net/files/4567/890/cool-mod.jar', body=JAR)
    result = installer.install('uuid-1', 1, source='curseforge', project_id=123, file_id=4567890, type_='mod')
    assert result['name'] == 'Cool Mod 1.0'
    assert wings.called('upload_file')[0][2] == '/mods/cool-mod.jar'
    assert rsps.calls[0].request.headers['x-api-key'] == 'cf-key'


def test_curseforge_needs_a_key(wings):
    with pytest.raises(ApiError):
        PluginInstaller(wings).install('uuid-1', 1, source='curseforge', project_id=1)


def test_search_merges_sources(installer, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/search', json={'hits': [{'slug': 'essentialsx', 'title': 'EssentialsX'}],
                                                            'total_hits': 40})
    rsps.add(responses.GET, f'{CURSEFORGE_API}/mods/search', json={
        'data': [{'id': 9, 'slug': 'ess', 'name': 'Ess', 'mainFileId': 77}], 'pagination': {'totalCount': 3}})
    result = installer.search('essentials')
    assert [r['source'] for r in result['results']] == ['modrinth', 'curseforge']
    assert result['total'] == 40
    assert result['results'][1]['fileId'] == 77


def test_search_survives_one_source_failing(installer, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/search', status=500)
    rsps.add(responses.GET, f'{CURSEFORGE_API}/mods/search', json={'data': [{'id': 9, 'name': 'Ess'}]})
    result = installer.search('essentials')
    assert [r['title'] for r in result['results']] == ['Ess']


def test_shaders_skip_curseforge(installer, rsps):
    rsps.add(responses.GET, f'{MODRINTH_API}/search', json={'hits': []})
    installer.search('bsl', type_='shader')
    assert [c.request.url.split('?')[0] for c in rsps.calls] == [f'{MODRINTH_API}/search']
