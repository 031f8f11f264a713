"""Identifier normalization: XML and source spellings must meet."""
import pytest

from aster.analyzer.models import ResourceIdentifier
from aster.analyzer.normalizer import file_resource_name, normalize
from aster.errors import NormalizationError


class TestNormalize:

    def test_dotted_style_name_matches_r_field(self):
        """<style name="Theme.App"> and R.style.Theme_App are the same resource."""
        assert normalize('style', 'Theme.App') == normalize('style', 'Theme_App')
        assert normalize('style', 'Theme.App') == ResourceIdentifier('style', 'Theme_App')

    def test_dash_becomes_underscore(self):
        assert normalize('color', 'brand-red').name == 'brand_red'

    def test_case_is_preserved(self):
        assert normalize('string', 'AppName') != normalize('string', 'appname')

    def test_type_aliases(self):
        assert normalize('string-array', 'days').type == 'array'
        assert normalize('integer-array', 'sizes').type == 'array'
        assert normalize('declare-styleable', 'Chip_text').type == 'styleable'

    def test_plus_and_package_prefixes_are_dropped(self):
        assert normalize('id', '+label') == ResourceIdentifier('id', 'label')
        assert normalize('string', 'com.example:title') == ResourceIdentifier('string', 'title')

    def test_unknown_type_raises(self):
        with pytest.raises(NormalizationError) as excinfo:
            normalize('widget', 'button')
        assert excinfo.value.raw_type == 'widget'
        assert excinfo.value.raw_name == 'button'

    def test_invalid_name_raises(self):
        with pytest.raises(NormalizationError):
            normalize('string', '9lives')

    def test_identifier_text_form(self):
        identifier = normalize('string', 'app_name')
        assert str(identifier) == 'string/app_name'
        assert ResourceIdentifier.parse('string/app_name') == identifier


class TestFileResourceName:

    @pytest.mark.parametrize('file_name,expected', [
        ('activity_main.xml', 'activity_main'),
        ('ic_launcher.png', 'ic_launcher'),
        ('button_bg.9.png', 'button_bg'),
        ('intro', 'intro'),
    ])
    def test_extension_is_stripped(self, file_name, expected):
        assert file_resource_name(file_name) == expected
