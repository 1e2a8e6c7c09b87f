from setuptools import setup
from pathlib import Path

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(name='kglue',
      version='1.0.0',
      description='OPACK, TLV8 and NSKeyedArchiver codecs for Apple wire/plist formats.',
      long_description=long_description,
      long_description_content_type='text/markdown',
      python_requires='>=3.8',
      author='kritanta',
      url='https://github.com/cxnder/kglue',
      install_requires=['Pygments'],
      extras_require={
            'test': ['pytest']
      },
      packages=['kglue'],
      package_dir={
            'kglue': 'src/kglue'
      },
      classifiers=[
            'Programming Language :: Python :: 3',
            'License :: OSI Approved :: MIT License',
            'Operating System :: OS Independent'
      ],
      entry_points={
            'console_scripts': ['kglue=kglue.kglue_script:main']
      }
      )
